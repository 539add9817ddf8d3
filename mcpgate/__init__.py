"""
mcpgate: Policy-Gated Action Gateway

Lets external agents and AI tools invoke platform operations under
tenant-scoped, role-based access control.

- A declarative allow/deny rule language with deny-first precedence and
  per-tenant override versions layered on a platform default.
- A registry of named, schema-validated actions executed through a single
  dispatcher: idempotency, authorization, validation, execution and
  exactly one audit entry per dispatch.
- An append-only action log that doubles as the idempotency cache.

Usage:
    from mcpgate import (
        ActionDispatcher,
        ActionRegistry,
        ExecutionContext,
        register_platform_actions,
        InMemoryPlatformServices,
    )

    registry = ActionRegistry()
    register_platform_actions(registry, InMemoryPlatformServices())
    dispatcher = ActionDispatcher(registry)

    ctx = ExecutionContext.new("acme", roles=["project_owner"], user_id="u-1")
    result = dispatcher.execute(ctx, "create_project", {"name": "Rollout"}, idempotency_key="k-1")

    if result.ok:
        project_id = result.data["projectId"]
    else:
        code = result.error["code"]   # e.g. POLICY_DENIED, VALIDATION_ERROR
"""

__version__ = "1.0.0"

# Policy language and evaluation
from .policy import (
    Effect,
    PolicyRule,
    RuleConditions,
    DEFAULT_POLICY,
    allow,
    deny,
    parse_policy_set,
    dump_policy_set,
    load_default_policy,
)
from .evaluator import (
    Decision,
    PolicyDecision,
    PolicyEvaluationContext,
    evaluate,
    can_access_resource,
    can_execute_action,
    enforce_conditions,
)

# Stores
from .tenant_policy import (
    TenantPolicyStore,
    TenantPolicyVersion,
    InMemoryTenantPolicyStore,
    SqliteTenantPolicyStore,
)
from .audit import (
    ActionStatus,
    ActionLogEntry,
    ActionAuditService,
    InMemoryAuditLog,
    SqliteAuditLog,
)
from .db import Database

# Dispatch
from .context import ExecutionContext
from .registry import Action, ActionRegistry, FunctionAction
from .dispatcher import ActionDispatcher, ActionResult, IdempotencyMode
from .actions import InMemoryPlatformServices, PlatformServices, register_platform_actions

# Errors
from .errors import (
    McpError,
    ActionNotFoundError,
    ActionValidationError,
    PolicyDeniedError,
    OwnershipRequiredError,
)

__all__ = [
    "__version__",
    "Effect",
    "PolicyRule",
    "RuleConditions",
    "DEFAULT_POLICY",
    "allow",
    "deny",
    "parse_policy_set",
    "dump_policy_set",
    "load_default_policy",
    "Decision",
    "PolicyDecision",
    "PolicyEvaluationContext",
    "evaluate",
    "can_access_resource",
    "can_execute_action",
    "enforce_conditions",
    "TenantPolicyStore",
    "TenantPolicyVersion",
    "InMemoryTenantPolicyStore",
    "SqliteTenantPolicyStore",
    "ActionStatus",
    "ActionLogEntry",
    "ActionAuditService",
    "InMemoryAuditLog",
    "SqliteAuditLog",
    "Database",
    "ExecutionContext",
    "Action",
    "ActionRegistry",
    "FunctionAction",
    "ActionDispatcher",
    "ActionResult",
    "IdempotencyMode",
    "InMemoryPlatformServices",
    "PlatformServices",
    "register_platform_actions",
    "McpError",
    "ActionNotFoundError",
    "ActionValidationError",
    "PolicyDeniedError",
    "OwnershipRequiredError",
]
