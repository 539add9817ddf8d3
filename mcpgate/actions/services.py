"""
Platform data collaborators used by the built-in actions and resources.

The dispatcher never touches platform tables directly; actions call a
PlatformServices implementation injected at startup.
"""

import copy
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..util import generate_id, utc_now_iso

TABLES = ("companies", "projects", "tasks", "external_systems", "applications")


class PlatformServices(ABC):
    """Minimal table access used by actions and the resource service."""

    @abstractmethod
    def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """Store a record, assigning ``id`` and ``created_at`` when missing."""

    @abstractmethod
    def select(self, table: str, **equals: Any) -> List[Dict[str, Any]]:
        """Records whose fields equal every given value, oldest first."""

    def get(self, table: str, record_id: str, **equals: Any) -> Optional[Dict[str, Any]]:
        rows = self.select(table, id=record_id, **equals)
        return rows[0] if rows else None


class InMemoryPlatformServices(PlatformServices):
    """
    Dict-backed platform tables for tests and the demo server.

    WARNING: Not persistent across restarts.
    """

    def __init__(self, seed: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self._tables: Dict[str, List[Dict[str, Any]]] = {t: [] for t in TABLES}
        self._lock = threading.Lock()
        for table, records in (seed or {}).items():
            for record in records:
                self.insert(table, record)

    def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        if table not in self._tables:
            raise KeyError(f"Unknown table: {table}")
        row = dict(record)
        row.setdefault("id", generate_id())
        row.setdefault("created_at", utc_now_iso())
        with self._lock:
            self._tables[table].append(row)
        return copy.deepcopy(row)

    def select(self, table: str, **equals: Any) -> List[Dict[str, Any]]:
        if table not in self._tables:
            raise KeyError(f"Unknown table: {table}")
        with self._lock:
            rows = list(self._tables[table])
        return [
            copy.deepcopy(r) for r in rows
            if all(r.get(k) == v for k, v in equals.items())
        ]
