"""
mcpgate Action Audit Log

Append-only record of every dispatched action. The log doubles as the
idempotency cache: a prior success entry for the same tenant and
idempotency key short-circuits re-execution.

Write failures never propagate: they are reported to the process log so a
logging outage cannot block or alter the primary action result.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .db import Database
from .log_backends import AuditArchive
from .logging_config import audit_log
from .util import from_json, generate_id, to_json, utc_now_iso


class ActionStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    PENDING = "pending"


@dataclass(frozen=True)
class ActionLogEntry:
    """Immutable record of one dispatch attempt."""
    tenant_id: str
    action_name: str
    status: ActionStatus
    duration_ms: int
    request_id: str
    user_id: Optional[str] = None
    input: Any = None
    result: Any = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    idempotency_key: Optional[str] = None
    policy_result: Optional[Dict[str, Any]] = None
    id: str = field(default_factory=generate_id)
    created_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "action_name": self.action_name,
            "payload_json": self.input,
            "result_json": self.result,
            "status": self.status.value,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "duration_ms": self.duration_ms,
            "idempotency_key": self.idempotency_key,
            "request_id": self.request_id,
            "policy_result": self.policy_result,
            "created_at": self.created_at,
        }


class AuditLog(ABC):
    """
    Abstract storage for action log entries.

    Implementations may raise; ActionAuditService contains the failures.
    """

    @abstractmethod
    def append(self, entry: ActionLogEntry) -> None:
        """Append a finalized entry."""

    @abstractmethod
    def find_success(self, tenant_id: str, idempotency_key: str) -> Optional[ActionLogEntry]:
        """Newest success entry for a tenant and idempotency key."""

    @abstractmethod
    def list_for_tenant(self, tenant_id: str, limit: int) -> List[ActionLogEntry]:
        """Newest entries first."""


class InMemoryAuditLog(AuditLog):
    """
    In-memory audit log for development/testing.

    WARNING: Not suitable for production.
    - Not persistent
    - Bounded: oldest entries are dropped past max_records
    """

    def __init__(self, max_records: int = 10000):
        self._records: List[ActionLogEntry] = []
        self._lock = threading.Lock()
        self._max_records = max_records

    def append(self, entry: ActionLogEntry) -> None:
        with self._lock:
            self._records.append(entry)
            if len(self._records) > self._max_records:
                self._records = self._records[-self._max_records:]

    def find_success(self, tenant_id: str, idempotency_key: str) -> Optional[ActionLogEntry]:
        with self._lock:
            records = self._records[:]
        for entry in reversed(records):
            if (entry.tenant_id == tenant_id
                    and entry.idempotency_key == idempotency_key
                    and entry.status == ActionStatus.SUCCESS):
                return entry
        return None

    def list_for_tenant(self, tenant_id: str, limit: int) -> List[ActionLogEntry]:
        with self._lock:
            records = self._records[:]
        return [e for e in reversed(records) if e.tenant_id == tenant_id][:limit]

    def all(self) -> List[ActionLogEntry]:
        with self._lock:
            return self._records[:]


class SqliteAuditLog(AuditLog):
    """Audit log backed by the mcp_action_log table."""

    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def _row_to_entry(row) -> ActionLogEntry:
        return ActionLogEntry(
            id=row["id"],
            tenant_id=row["tenant_id"],
            user_id=row["user_id"],
            action_name=row["action_name"],
            input=from_json(row["payload_json"]),
            result=from_json(row["result_json"]),
            status=ActionStatus(row["status"]),
            error_code=row["error_code"],
            error_message=row["error_message"],
            duration_ms=row["duration_ms"],
            idempotency_key=row["idempotency_key"],
            request_id=row["request_id"],
            policy_result=from_json(row["policy_result"]),
            created_at=row["created_at"],
        )

    def append(self, entry: ActionLogEntry) -> None:
        with self.db.transaction() as conn:
            conn.execute(
                "INSERT INTO mcp_action_log(id, tenant_id, user_id, action_name, payload_json, result_json, "
                "status, error_code, error_message, duration_ms, idempotency_key, request_id, policy_result, "
                "created_at) VALUES(?,?,?,?,?,?,?,?,?,?,?,?,?,?)",
                (
                    entry.id, entry.tenant_id, entry.user_id, entry.action_name,
                    to_json(entry.input),
                    to_json(entry.result) if entry.result is not None else None,
                    entry.status.value, entry.error_code, entry.error_message,
                    entry.duration_ms, entry.idempotency_key, entry.request_id,
                    to_json(entry.policy_result) if entry.policy_result is not None else None,
                    entry.created_at,
                )
            )

    def find_success(self, tenant_id: str, idempotency_key: str) -> Optional[ActionLogEntry]:
        cur = self.db.connection().execute(
            "SELECT * FROM mcp_action_log WHERE tenant_id=? AND idempotency_key=? AND status=? "
            "ORDER BY seq DESC LIMIT 1",
            (tenant_id, idempotency_key, ActionStatus.SUCCESS.value)
        )
        row = cur.fetchone()
        return self._row_to_entry(row) if row else None

    def list_for_tenant(self, tenant_id: str, limit: int) -> List[ActionLogEntry]:
        cur = self.db.connection().execute(
            "SELECT * FROM mcp_action_log WHERE tenant_id=? ORDER BY seq DESC LIMIT ?",
            (tenant_id, limit)
        )
        return [self._row_to_entry(row) for row in cur.fetchall()]


class ActionAuditService:
    """
    Fault-containing front for an AuditLog.

    - log_action never raises
    - find_by_idempotency_key returns None on read errors
    - get_logs_for_tenant returns [] on read errors
    """

    def __init__(self, backend: Optional[AuditLog] = None, archive: Optional[AuditArchive] = None):
        self.backend = backend or InMemoryAuditLog()
        self.archive = archive

    def log_action(self, entry: ActionLogEntry) -> bool:
        """Persist an entry. Returns False if the write failed."""
        try:
            self.backend.append(entry)
        except Exception as e:
            audit_log.audit_write_failed(entry.tenant_id, entry.action_name, str(e))
            return False

        if self.archive is not None:
            try:
                self.archive.write_entry(entry.id, entry.tenant_id, entry.created_at, to_json(entry.to_dict()))
            except Exception as e:
                audit_log.audit_write_failed(entry.tenant_id, entry.action_name, f"archive: {e}")
        return True

    def find_by_idempotency_key(self, tenant_id: str, idempotency_key: str) -> Optional[ActionLogEntry]:
        try:
            return self.backend.find_success(tenant_id, idempotency_key)
        except Exception as e:
            audit_log.audit_read_failed(tenant_id, "find_by_idempotency_key", str(e))
            return None

    def get_logs_for_tenant(self, tenant_id: str, limit: int = 25) -> List[ActionLogEntry]:
        try:
            return self.backend.list_for_tenant(tenant_id, limit)
        except Exception as e:
            audit_log.audit_read_failed(tenant_id, "get_logs_for_tenant", str(e))
            return []
