"""
mcpgate Workflow Resolution

Maps (tenant, provider, workflow key) to a webhook URL and calls it.

Resolution order:
1. The tenant's active mapping supplies the webhook path (required).
2. The tenant's active integration for the provider supplies the base URL
   (``n8n_mcp_url`` or ``base_url`` in its config).
3. ``N8N_BASE_URL`` is the platform-wide base URL fallback.

Any miss resolves to None; callers decide how to report it.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from . import config
from .db import Database
from .errors import WorkflowError
from .logging_config import audit_log
from .util import canonicalize, from_json, generate_id, hmac_sha256_hex, to_json, utc_now_iso

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "n8n"
SIGNATURE_HEADER = "X-Mcp-Signature"
BASE_URL_KEYS = ("n8n_mcp_url", "base_url")


@dataclass(frozen=True)
class WorkflowMapping:
    id: str
    tenant_id: str
    provider: str
    workflow_key: str
    webhook_path: str
    description: Optional[str]
    is_active: bool
    created_at: str
    created_by: Optional[str]
    updated_at: str

    @classmethod
    def from_row(cls, row) -> 'WorkflowMapping':
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            provider=row["provider"],
            workflow_key=row["workflow_key"],
            webhook_path=row["webhook_path"],
            description=row["description"],
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
            created_by=row["created_by"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "provider": self.provider,
            "workflow_key": self.workflow_key,
            "webhook_path": self.webhook_path,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": self.created_at,
            "created_by": self.created_by,
            "updated_at": self.updated_at,
        }


class WorkflowStore:
    """Tenant workflow mappings and integration base URLs."""

    def __init__(self, db: Database, fallback_base_url: Optional[str] = None):
        self.db = db
        self.fallback_base_url = fallback_base_url if fallback_base_url is not None else config.N8N_BASE_URL

    def _active_mapping_row(self, tenant_id: str, provider: str, workflow_key: str):
        cur = self.db.connection().execute(
            "SELECT * FROM mcp_tenant_workflow_map WHERE tenant_id=? AND provider=? AND workflow_key=? "
            "AND is_active=1 ORDER BY created_at DESC LIMIT 1",
            (tenant_id, provider, workflow_key)
        )
        return cur.fetchone()

    def get_integration(self, tenant_id: str, adapter_id: str) -> Optional[Dict[str, Any]]:
        """Active integration config for a tenant and adapter, if any."""
        cur = self.db.connection().execute(
            "SELECT config_json FROM tenant_integrations WHERE tenant_id=? AND adapter_id=? AND is_active=1",
            (tenant_id, adapter_id)
        )
        row = cur.fetchone()
        return from_json(row["config_json"]) if row else None

    def resolve_webhook(self, tenant_id: str, provider: str, workflow_key: str) -> Optional[str]:
        """
        Resolve the full webhook URL for a workflow.

        Returns:
            Base URL joined with the mapping's webhook path, or None when no
            active mapping or no base URL is available.
        """
        try:
            mapping = self._active_mapping_row(tenant_id, provider, workflow_key)
        except Exception as e:
            logger.error("Error resolving webhook for tenant %s: %s", tenant_id, e)
            return None

        if mapping is None:
            logger.info("No workflow mapping for %s/%s (tenant %s)", provider, workflow_key, tenant_id)
            return None

        base_url = None
        try:
            integration = self.get_integration(tenant_id, provider) or {}
            for key in BASE_URL_KEYS:
                if integration.get(key):
                    base_url = integration[key]
                    break
        except Exception as e:
            logger.error("Error fetching integration config for tenant %s: %s", tenant_id, e)

        base_url = base_url or self.fallback_base_url
        if not base_url:
            logger.warning("No base URL configured for provider %s (tenant %s)", provider, tenant_id)
            return None

        return f"{base_url}{mapping['webhook_path']}"

    def list_workflows(self, tenant_id: str) -> List[WorkflowMapping]:
        """All mappings for a tenant, newest first. Errors propagate."""
        cur = self.db.connection().execute(
            "SELECT * FROM mcp_tenant_workflow_map WHERE tenant_id=? ORDER BY created_at DESC",
            (tenant_id,)
        )
        return [WorkflowMapping.from_row(row) for row in cur.fetchall()]

    def upsert_workflow_map(
        self,
        tenant_id: str,
        workflow_key: str,
        webhook_path: str,
        created_by: Optional[str] = None,
        provider: str = DEFAULT_PROVIDER,
        description: Optional[str] = None,
        is_active: bool = True
    ) -> WorkflowMapping:
        """Update the active mapping for the key in place, or insert a new one."""
        now = utc_now_iso()
        existing = self._active_mapping_row(tenant_id, provider, workflow_key)

        with self.db.transaction() as conn:
            if existing is not None:
                mapping_id = existing["id"]
                conn.execute(
                    "UPDATE mcp_tenant_workflow_map SET webhook_path=?, description=?, is_active=?, updated_at=? "
                    "WHERE id=?",
                    (webhook_path, description, 1 if is_active else 0, now, mapping_id)
                )
            else:
                mapping_id = generate_id()
                conn.execute(
                    "INSERT INTO mcp_tenant_workflow_map(id, tenant_id, provider, workflow_key, webhook_path, "
                    "description, is_active, created_at, created_by, updated_at) VALUES(?,?,?,?,?,?,?,?,?,?)",
                    (mapping_id, tenant_id, provider, workflow_key, webhook_path, description,
                     1 if is_active else 0, now, created_by, now)
                )
            row = conn.execute("SELECT * FROM mcp_tenant_workflow_map WHERE id=?", (mapping_id,)).fetchone()

        return WorkflowMapping.from_row(row)

    def deactivate_workflow_map(self, mapping_id: str, tenant_id: str) -> None:
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE mcp_tenant_workflow_map SET is_active=0, updated_at=? WHERE id=? AND tenant_id=?",
                (utc_now_iso(), mapping_id, tenant_id)
            )

    def set_integration(self, tenant_id: str, adapter_id: str, config_data: Dict[str, Any],
                        is_active: bool = True) -> None:
        with self.db.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO tenant_integrations(tenant_id, adapter_id, config_json, is_active, "
                "updated_at) VALUES(?,?,?,?,?)",
                (tenant_id, adapter_id, to_json(config_data), 1 if is_active else 0, utc_now_iso())
            )


def sign_body(secret: str, body: bytes) -> str:
    """Signature header value for a webhook body."""
    return "sha256=" + hmac_sha256_hex(secret, body)


class WorkflowClient:
    """
    Posts signed JSON payloads to workflow webhooks.

    The body is canonical JSON; when a secret is given the
    ``X-Mcp-Signature`` header carries ``sha256=<hex hmac of body>``.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout if timeout is not None else config.WORKFLOW_TIMEOUT_SECONDS

    def trigger(
        self,
        url: str,
        payload: Dict[str, Any],
        secret: Optional[str] = None,
        tenant_id: str = "",
        workflow_key: str = ""
    ) -> Dict[str, Any]:
        body = canonicalize(payload)
        headers = {"Content-Type": "application/json"}
        if secret:
            headers[SIGNATURE_HEADER] = sign_body(secret, body)

        try:
            response = requests.post(url, data=body, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise WorkflowError(f"Workflow request failed: {e}") from e

        audit_log.workflow_triggered(tenant_id, workflow_key, response.status_code)

        if not 200 <= response.status_code < 300:
            raise WorkflowError(
                f"Workflow responded with status {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError:
            data = {"body": response.text}
        return {"status_code": response.status_code, "response": data}
