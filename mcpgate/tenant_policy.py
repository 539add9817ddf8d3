"""
mcpgate Tenant Policy Store

Tenants override the platform default policy with versioned rule sets.
Versions are append-only: a change inserts a new active version and
deactivates the previous one, so every change stays available for audit
and rollback.

The effective policy of a tenant is the platform default followed by the
tenant's active rules. Tenant rules come last so a tenant deny can
override a platform allow under deny-first evaluation.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence

from .db import Database
from .logging_config import audit_log
from .policy import PolicyRule, PolicySet, dump_policy_set, load_default_policy, parse_policy_set
from .util import from_json, generate_id, to_json, utc_now_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantPolicyVersion:
    """One persisted snapshot of a tenant's override rules."""
    id: str
    tenant_id: str
    rules: tuple
    version: str
    is_active: bool
    created_at: str
    created_by: Optional[str]
    updated_at: str
    source: str = "tenant"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "source": self.source,
            "policy_json": dump_policy_set(self.rules),
            "version": self.version,
            "is_active": self.is_active,
            "created_at": self.created_at,
            "created_by": self.created_by,
            "updated_at": self.updated_at,
        }


class TenantPolicyStore(ABC):
    """
    Contract shared by all policy store backends.

    Backends implement the storage primitives; the version semantics
    (single active version, default fallback) live here.
    """

    def __init__(self, default_policy: Optional[Sequence[PolicyRule]] = None):
        self.default_policy: PolicySet = (
            list(default_policy) if default_policy is not None else load_default_policy()
        )

    # ---- storage primitives -------------------------------------------

    @abstractmethod
    def _fetch_active(self, tenant_id: str) -> Optional[TenantPolicyVersion]:
        """Return the newest active version for a tenant, if any."""

    @abstractmethod
    def _fetch_all(self, tenant_id: str) -> List[TenantPolicyVersion]:
        """Return every version for a tenant, newest first."""

    @abstractmethod
    def _deactivate_active(self, tenant_id: str) -> None:
        """Mark every active version of a tenant inactive."""

    @abstractmethod
    def _insert(self, version: TenantPolicyVersion) -> None:
        pass

    @abstractmethod
    def _set_active(self, policy_id: str, tenant_id: str, is_active: bool) -> bool:
        """Flip is_active on one version. Returns False if it does not exist."""

    @abstractmethod
    def _activate_exclusive(self, policy_id: str, tenant_id: str) -> bool:
        """
        Activate one version and deactivate its siblings as a single step.
        Returns False, changing nothing, if the version does not exist.
        """

    # ---- public contract ----------------------------------------------

    def get_active_policy(self, tenant_id: str) -> PolicySet:
        """
        Effective policy for a tenant: default rules followed by the
        tenant's active override.

        Read errors degrade to the default policy; this never raises.
        """
        try:
            active = self._fetch_active(tenant_id)
        except Exception as e:
            logger.error("Error fetching active policy for tenant %s: %s", tenant_id, e)
            return list(self.default_policy)

        if active is None:
            return list(self.default_policy)

        return list(self.default_policy) + list(active.rules)

    def get_active_version(self, tenant_id: str) -> Optional[TenantPolicyVersion]:
        return self._fetch_active(tenant_id)

    def list_policies(self, tenant_id: str) -> List[TenantPolicyVersion]:
        """List all versions for a tenant, newest first. Errors propagate."""
        return self._fetch_all(tenant_id)

    def upsert_policy(
        self,
        tenant_id: str,
        rules: Sequence[PolicyRule],
        version: str,
        actor: Optional[str]
    ) -> TenantPolicyVersion:
        """
        Store a new active version for a tenant.

        Deactivates the current active version first, then inserts the new
        one as active. Storage errors propagate.
        """
        self._deactivate_active(tenant_id)

        now = utc_now_iso()
        row = TenantPolicyVersion(
            id=generate_id(),
            tenant_id=tenant_id,
            rules=tuple(rules),
            version=version,
            is_active=True,
            created_at=now,
            created_by=actor,
            updated_at=now,
        )
        self._insert(row)
        audit_log.policy_changed(tenant_id, "created", row.id, version=version, actor=actor)
        return row

    def activate_policy(self, policy_id: str, tenant_id: str) -> None:
        """
        Make one version active and its siblings inactive. An unknown id
        raises KeyError and leaves the current active version in place.
        """
        if not self._activate_exclusive(policy_id, tenant_id):
            raise KeyError(f"Policy {policy_id} not found for tenant {tenant_id}")
        audit_log.policy_changed(tenant_id, "activated", policy_id)

    def deactivate_policy(self, policy_id: str, tenant_id: str) -> None:
        if not self._set_active(policy_id, tenant_id, False):
            raise KeyError(f"Policy {policy_id} not found for tenant {tenant_id}")
        audit_log.policy_changed(tenant_id, "deactivated", policy_id)


class InMemoryTenantPolicyStore(TenantPolicyStore):
    """
    In-memory policy store for development and testing.

    WARNING: Not persistent across restarts.
    """

    def __init__(self, default_policy: Optional[Sequence[PolicyRule]] = None):
        super().__init__(default_policy)
        self._rows: List[TenantPolicyVersion] = []
        self._lock = threading.Lock()

    def _fetch_active(self, tenant_id: str) -> Optional[TenantPolicyVersion]:
        with self._lock:
            active = [r for r in self._rows if r.tenant_id == tenant_id and r.is_active]
        return active[-1] if active else None

    def _fetch_all(self, tenant_id: str) -> List[TenantPolicyVersion]:
        with self._lock:
            return [r for r in reversed(self._rows) if r.tenant_id == tenant_id]

    def _deactivate_active(self, tenant_id: str) -> None:
        now = utc_now_iso()
        with self._lock:
            self._rows = [
                replace(r, is_active=False, updated_at=now)
                if r.tenant_id == tenant_id and r.is_active else r
                for r in self._rows
            ]

    def _insert(self, version: TenantPolicyVersion) -> None:
        with self._lock:
            self._rows.append(version)

    def _set_active(self, policy_id: str, tenant_id: str, is_active: bool) -> bool:
        now = utc_now_iso()
        found = False
        with self._lock:
            for i, r in enumerate(self._rows):
                if r.id == policy_id and r.tenant_id == tenant_id:
                    self._rows[i] = replace(r, is_active=is_active, updated_at=now)
                    found = True
        return found

    def _activate_exclusive(self, policy_id: str, tenant_id: str) -> bool:
        now = utc_now_iso()
        with self._lock:
            if not any(r.id == policy_id and r.tenant_id == tenant_id for r in self._rows):
                return False
            self._rows = [
                replace(r, is_active=r.id == policy_id, updated_at=now)
                if r.tenant_id == tenant_id and (r.is_active or r.id == policy_id) else r
                for r in self._rows
            ]
        return True


class SqliteTenantPolicyStore(TenantPolicyStore):
    """Policy store backed by the mcp_tenant_policy table."""

    def __init__(self, db: Database, default_policy: Optional[Sequence[PolicyRule]] = None):
        super().__init__(default_policy)
        self.db = db

    @staticmethod
    def _row_to_version(row) -> TenantPolicyVersion:
        return TenantPolicyVersion(
            id=row["id"],
            tenant_id=row["tenant_id"],
            source=row["source"],
            rules=tuple(parse_policy_set(from_json(row["policy_json"]))),
            version=row["version"],
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
            created_by=row["created_by"],
            updated_at=row["updated_at"],
        )

    def _fetch_active(self, tenant_id: str) -> Optional[TenantPolicyVersion]:
        cur = self.db.connection().execute(
            "SELECT * FROM mcp_tenant_policy WHERE tenant_id=? AND is_active=1 "
            "ORDER BY created_at DESC, rowid DESC LIMIT 1",
            (tenant_id,)
        )
        row = cur.fetchone()
        return self._row_to_version(row) if row else None

    def _fetch_all(self, tenant_id: str) -> List[TenantPolicyVersion]:
        cur = self.db.connection().execute(
            "SELECT * FROM mcp_tenant_policy WHERE tenant_id=? ORDER BY created_at DESC, rowid DESC",
            (tenant_id,)
        )
        return [self._row_to_version(row) for row in cur.fetchall()]

    def _deactivate_active(self, tenant_id: str) -> None:
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE mcp_tenant_policy SET is_active=0, updated_at=? WHERE tenant_id=? AND is_active=1",
                (utc_now_iso(), tenant_id)
            )

    def _insert(self, version: TenantPolicyVersion) -> None:
        with self.db.transaction() as conn:
            conn.execute(
                "INSERT INTO mcp_tenant_policy(id, tenant_id, source, policy_json, version, is_active, "
                "created_at, created_by, updated_at) VALUES(?,?,?,?,?,?,?,?,?)",
                (
                    version.id, version.tenant_id, version.source,
                    to_json(dump_policy_set(version.rules)), version.version,
                    1 if version.is_active else 0,
                    version.created_at, version.created_by, version.updated_at,
                )
            )

    def _set_active(self, policy_id: str, tenant_id: str, is_active: bool) -> bool:
        with self.db.transaction() as conn:
            cur = conn.execute(
                "UPDATE mcp_tenant_policy SET is_active=?, updated_at=? WHERE id=? AND tenant_id=?",
                (1 if is_active else 0, utc_now_iso(), policy_id, tenant_id)
            )
            return cur.rowcount == 1

    def _activate_exclusive(self, policy_id: str, tenant_id: str) -> bool:
        now = utc_now_iso()
        with self.db.transaction() as conn:
            cur = conn.execute(
                "SELECT 1 FROM mcp_tenant_policy WHERE id=? AND tenant_id=?",
                (policy_id, tenant_id)
            )
            if cur.fetchone() is None:
                return False
            conn.execute(
                "UPDATE mcp_tenant_policy SET is_active=0, updated_at=? "
                "WHERE tenant_id=? AND is_active=1 AND id<>?",
                (now, tenant_id, policy_id)
            )
            conn.execute(
                "UPDATE mcp_tenant_policy SET is_active=1, updated_at=? WHERE id=? AND tenant_id=?",
                (now, policy_id, tenant_id)
            )
        return True
