"""
mcpgate Resource Service

Read-only, paginated access to platform records by resource type.

Every read is authorized with can_access_resource against the tenant's
effective policy. Projects, tasks and applications are tenant-scoped;
suppliers are companies flagged as approved suppliers.

Pages are ordered by (created_at, id) ascending. The cursor is an opaque
base64 JSON object ``{id, created_at}`` naming the last item returned.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .actions.services import PlatformServices
from .context import ExecutionContext
from .errors import InvalidCursorError, InvalidResourceTypeError, PolicyDeniedError
from .evaluator import PolicyDecision, can_access_resource, enforce_conditions
from .logging_config import audit_log
from .tenant_policy import InMemoryTenantPolicyStore, TenantPolicyStore
from .util import b64d, b64e, canonicalize

logger = logging.getLogger(__name__)

RESOURCE_TABLES = {
    "company": "companies",
    "supplier": "companies",
    "project": "projects",
    "task": "tasks",
    "external_system": "external_systems",
    "application": "applications",
}
VALID_RESOURCE_TYPES = tuple(RESOURCE_TABLES)
TENANT_SCOPED = ("project", "task", "application")
SEARCH_FIELDS = {
    "company": ("name", "org_number"),
    "supplier": ("name", "org_number"),
    "project": ("title", "description"),
    "task": ("title", "description"),
    "external_system": ("name", "vendor"),
    "application": ("name", "key"),
}

DEFAULT_LIMIT = 25
MAX_LIMIT = 100


@dataclass
class ResourcePage:
    items: List[Dict[str, Any]] = field(default_factory=list)
    cursor: Optional[str] = None
    has_more: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"items": self.items, "cursor": self.cursor, "hasMore": self.has_more}


def encode_cursor(record: Dict[str, Any]) -> str:
    return b64e(canonicalize({"id": record["id"], "created_at": record["created_at"]}))


def decode_cursor(cursor: str) -> Dict[str, str]:
    try:
        data = json.loads(b64d(cursor).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as e:
        raise InvalidCursorError() from e
    if not isinstance(data, dict) or "id" not in data or "created_at" not in data:
        raise InvalidCursorError()
    return {"id": str(data["id"]), "created_at": str(data["created_at"])}


def _sort_key(record: Dict[str, Any]):
    return (str(record.get("created_at", "")), str(record.get("id", "")))


class ResourceService:
    """List and get platform records under policy."""

    def __init__(self, services: PlatformServices, policy_store: Optional[TenantPolicyStore] = None):
        self.services = services
        self.policy_store = policy_store or InMemoryTenantPolicyStore()

    def _check_type(self, resource_type: str) -> None:
        if resource_type not in RESOURCE_TABLES:
            logger.warning("Invalid resource type requested: %s", resource_type)
            raise InvalidResourceTypeError(resource_type, VALID_RESOURCE_TYPES)

    def _authorize(self, ctx: ExecutionContext, resource_type: str, operation: str) -> PolicyDecision:
        decision = can_access_resource(
            ctx.roles, resource_type, operation, self.policy_store.get_active_policy(ctx.tenant_id)
        )
        audit_log.policy_decision(
            ctx.tenant_id, list(ctx.roles), decision.decision.value, decision.reason,
            action_name=operation, resource_type=resource_type,
        )
        if not decision.allowed:
            raise PolicyDeniedError(decision)
        return decision

    def _records(self, ctx: ExecutionContext, resource_type: str, **equals: Any) -> List[Dict[str, Any]]:
        if resource_type in TENANT_SCOPED:
            equals["tenant_id"] = ctx.tenant_id
        if resource_type == "supplier":
            equals["is_approved_supplier"] = True
        return self.services.select(RESOURCE_TABLES[resource_type], **equals)

    @staticmethod
    def _is_owner(ctx: ExecutionContext, record: Dict[str, Any]) -> bool:
        return ctx.user_id is not None and record.get("owner_id") == ctx.user_id

    def list(
        self,
        ctx: ExecutionContext,
        resource_type: str,
        q: Optional[str] = None,
        limit: int = DEFAULT_LIMIT,
        cursor: Optional[str] = None
    ) -> ResourcePage:
        """
        One page of records.

        Raises:
            InvalidResourceTypeError: unknown resource type
            PolicyDeniedError: the caller may not list this type
            InvalidCursorError: the cursor cannot be decoded
        """
        self._check_type(resource_type)
        decision = self._authorize(ctx, resource_type, "list")
        safe_limit = max(1, min(int(limit), MAX_LIMIT))
        after = decode_cursor(cursor) if cursor else None

        records = self._records(ctx, resource_type)
        if decision.requires_ownership():
            records = [r for r in records if self._is_owner(ctx, r)]

        if q:
            needle = q.lower()
            fields = SEARCH_FIELDS.get(resource_type, ("name",))
            records = [r for r in records if any(needle in str(r.get(f) or "").lower() for f in fields)]

        records.sort(key=_sort_key)
        if after is not None:
            boundary = (after["created_at"], after["id"])
            records = [r for r in records if _sort_key(r) > boundary]

        has_more = len(records) > safe_limit
        items = records[:safe_limit]
        next_cursor = encode_cursor(items[-1]) if has_more and items else None

        logger.info("Listed %d %s resources for tenant %s", len(items), resource_type, ctx.tenant_id)
        return ResourcePage(items=items, cursor=next_cursor, has_more=has_more)

    def get(self, ctx: ExecutionContext, resource_type: str, resource_id: str) -> Optional[Dict[str, Any]]:
        """
        One record by id, or None when it does not exist in the caller's scope.

        Raises:
            OwnershipRequiredError: the policy requires ownership and the
                caller does not own the record
        """
        self._check_type(resource_type)
        decision = self._authorize(ctx, resource_type, "get")

        rows = self._records(ctx, resource_type, id=resource_id)
        record = rows[0] if rows else None
        if record is not None:
            enforce_conditions(decision, lambda: self._is_owner(ctx, record))
        return record
