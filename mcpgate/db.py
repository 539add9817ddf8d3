"""
Database module for mcpgate.

Provides SQLite-based storage for tenant policy versions, the action log,
workflow mappings, tenant integrations and tenant secrets.
Connections are thread-local; all tables are created with their indexes.
"""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Union

from . import config

TABLES = [
    "mcp_tenant_policy",
    "mcp_action_log",
    "mcp_tenant_workflow_map",
    "tenant_integrations",
    "integration_secrets",
]


class Database:
    """
    Thread-local SQLite connection holder.

    One instance is created per process (or per test) and passed to every
    store that needs persistence.
    """

    def __init__(self, path: Union[str, Path, None] = None):
        self.path = Path(path or config.DB_PATH)
        self._local = threading.local()

    def connection(self) -> sqlite3.Connection:
        """
        Get a thread-local database connection.
        Connections are reused within the same thread.
        """
        conn = getattr(self._local, "conn", None)
        if conn is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.path), check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute("PRAGMA temp_store=MEMORY;")
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database transactions.
        Automatically commits on success, rolls back on failure.
        """
        conn = self.connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def init_schema(self) -> None:
        """
        Initialize database schema with proper indexes.
        Safe to call multiple times (uses IF NOT EXISTS).
        """
        with self.transaction() as conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS mcp_tenant_policy (
                id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                source TEXT NOT NULL DEFAULT 'tenant',
                policy_json TEXT NOT NULL,
                version TEXT NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                created_by TEXT,
                updated_at TEXT NOT NULL
            );""")
            conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_tenant_policy_active
            ON mcp_tenant_policy(tenant_id, is_active);""")

            conn.execute("""
            CREATE TABLE IF NOT EXISTS mcp_action_log (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                tenant_id TEXT NOT NULL,
                user_id TEXT,
                action_name TEXT NOT NULL,
                payload_json TEXT,
                result_json TEXT,
                status TEXT NOT NULL,
                error_code TEXT,
                error_message TEXT,
                duration_ms INTEGER NOT NULL,
                idempotency_key TEXT,
                request_id TEXT NOT NULL,
                policy_result TEXT,
                created_at TEXT NOT NULL
            );""")
            conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_action_log_idempotency
            ON mcp_action_log(tenant_id, idempotency_key, status);""")
            conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_action_log_tenant_created
            ON mcp_action_log(tenant_id, created_at);""")

            conn.execute("""
            CREATE TABLE IF NOT EXISTS mcp_tenant_workflow_map (
                id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                provider TEXT NOT NULL,
                workflow_key TEXT NOT NULL,
                webhook_path TEXT NOT NULL,
                description TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                created_by TEXT,
                updated_at TEXT NOT NULL
            );""")
            conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_workflow_map_lookup
            ON mcp_tenant_workflow_map(tenant_id, provider, workflow_key, is_active);""")

            conn.execute("""
            CREATE TABLE IF NOT EXISTS tenant_integrations (
                tenant_id TEXT NOT NULL,
                adapter_id TEXT NOT NULL,
                config_json TEXT NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (tenant_id, adapter_id)
            );""")

            conn.execute("""
            CREATE TABLE IF NOT EXISTS integration_secrets (
                id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                provider TEXT NOT NULL,
                secret_ciphertext TEXT NOT NULL,
                created_at TEXT NOT NULL,
                rotated_at TEXT,
                expires_at TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_by TEXT
            );""")
            conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_integration_secrets_active
            ON integration_secrets(tenant_id, provider, is_active);""")

    # ============================================================
    # Metrics and Health
    # ============================================================

    def stats(self) -> Dict[str, int]:
        """Get row counts per table for monitoring."""
        conn = self.connection()
        stats = {}
        for table in TABLES:
            cur = conn.execute(f"SELECT COUNT(*) as cnt FROM {table}")
            stats[f"{table}_count"] = cur.fetchone()['cnt']
        return stats

    # ============================================================
    # Test Support: Database Reset
    # ============================================================

    def reset(self) -> None:
        """
        Reset the database for test isolation.
        Clears all tables but preserves schema.
        """
        with self.transaction() as conn:
            for table in TABLES:
                conn.execute(f"DELETE FROM {table}")

    def close(self) -> None:
        """Close the thread-local connection (for cleanup)."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None
