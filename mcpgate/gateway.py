"""
Composition root: wires stores, registry, dispatcher and resource service
from configuration. Shared by the HTTP app and the CLI.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .actions import InMemoryPlatformServices, PlatformServices, register_platform_actions
from .audit import ActionAuditService, InMemoryAuditLog, SqliteAuditLog
from .db import Database
from .dispatcher import ActionDispatcher, IdempotencyMode
from .log_backends import get_archive_backend
from .registry import ActionRegistry
from .resources import ResourceService
from .tenant_policy import InMemoryTenantPolicyStore, SqliteTenantPolicyStore, TenantPolicyStore
from .tenant_secrets import SecretCipher, TenantSecretStore
from .workflows import WorkflowClient, WorkflowStore

logger = logging.getLogger(__name__)


@dataclass
class Gateway:
    registry: ActionRegistry
    audit: ActionAuditService
    policy_store: TenantPolicyStore
    dispatcher: ActionDispatcher
    resources: ResourceService
    services: PlatformServices
    db: Optional[Database] = None
    workflows: Optional[WorkflowStore] = None
    secrets: Optional[TenantSecretStore] = None


def _secret_store(db: Database, cipher: Optional[SecretCipher]) -> Optional[TenantSecretStore]:
    try:
        return TenantSecretStore(db, cipher)
    except (OSError, ValueError, KeyError) as e:
        logger.warning("Tenant secrets disabled, no usable encryption key: %s", e)
        return None


def build_gateway(
    db: Optional[Database] = None,
    services: Optional[PlatformServices] = None,
    cipher: Optional[SecretCipher] = None,
    in_memory: bool = False,
    idempotency_mode: Optional[IdempotencyMode] = None,
    workflow_client: Optional[WorkflowClient] = None
) -> Gateway:
    """
    Build a fully wired gateway.

    Args:
        db: SQLite database; defaults to config.DB_PATH unless in_memory
        services: Platform data collaborator; defaults to in-memory tables
        cipher: Secret encryption; defaults to the configured key
        in_memory: Use in-memory policy and audit stores (no workflows or secrets)
        idempotency_mode: Override MCPGATE_IDEMPOTENCY_MODE
        workflow_client: Override the HTTP client used by trigger_workflow
    """
    services = services or InMemoryPlatformServices()
    registry = ActionRegistry()
    workflows = None
    secrets = None

    if in_memory:
        db = None
        policy_store: TenantPolicyStore = InMemoryTenantPolicyStore()
        audit = ActionAuditService(InMemoryAuditLog(), get_archive_backend())
    else:
        db = db or Database()
        db.init_schema()
        policy_store = SqliteTenantPolicyStore(db)
        audit = ActionAuditService(SqliteAuditLog(db), get_archive_backend())
        workflows = WorkflowStore(db)
        secrets = _secret_store(db, cipher)

    register_platform_actions(registry, services, workflows, secrets, workflow_client)

    return Gateway(
        registry=registry,
        audit=audit,
        policy_store=policy_store,
        dispatcher=ActionDispatcher(registry, audit, policy_store, idempotency_mode=idempotency_mode),
        resources=ResourceService(services, policy_store),
        services=services,
        db=db,
        workflows=workflows,
        secrets=secrets,
    )
