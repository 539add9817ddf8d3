"""
mcpgate Tenant Secrets

Per-tenant, per-provider signing secrets for outbound workflow calls.

At most one secret is active per (tenant, provider). Creating a secret
deactivates the previous one; rotating additionally keeps the previous
secret on record with an expiry so in-flight verifications can finish.
Secret material is encrypted at rest with a NaCl SecretBox and never
written to logs.
"""

import json
import logging
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

import nacl.secret
import nacl.utils

from . import config
from .db import Database
from .errors import SecretNotConfiguredError
from .logging_config import audit_log
from .util import b64d, b64e, generate_id, mask_sensitive, utc_iso, utc_now

logger = logging.getLogger(__name__)

SECRET_BYTES = 32
ROTATION_GRACE_DAYS = 60


# ============================================================
# Encryption at rest
# ============================================================

class SecretCipher:
    """Symmetric encryption for stored secrets (XSalsa20-Poly1305)."""

    def __init__(self, key: bytes):
        self._box = nacl.secret.SecretBox(key)

    @classmethod
    def generate_key(cls) -> bytes:
        return nacl.utils.random(nacl.secret.SecretBox.KEY_SIZE)

    @classmethod
    def from_key_file(cls, path: str) -> 'SecretCipher':
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        return cls(b64d(raw["key_b64"]))

    @classmethod
    def from_config(cls) -> 'SecretCipher':
        """
        Build from MCPGATE_SECRET_KEY (base64) or the key file at
        MCPGATE_SECRET_KEY_PATH.
        """
        if config.SECRET_KEY:
            return cls(b64d(config.SECRET_KEY))
        return cls.from_key_file(config.SECRET_KEY_PATH)

    def encrypt(self, plaintext: str) -> str:
        return b64e(bytes(self._box.encrypt(plaintext.encode("utf-8"))))

    def decrypt(self, ciphertext: str) -> str:
        return self._box.decrypt(b64d(ciphertext)).decode("utf-8")


def write_key_file(path: str, kid: str = "mcpgate-secret-01") -> Dict[str, str]:
    """Generate a new encryption key and write it as JSON."""
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    data = {"kid": kid, "key_b64": b64e(SecretCipher.generate_key())}
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    return data


def generate_secret() -> str:
    """32 random bytes, base64 encoded."""
    return b64e(nacl.utils.random(SECRET_BYTES))


# ============================================================
# Store
# ============================================================

@dataclass(frozen=True)
class TenantSecret:
    id: str
    tenant_id: str
    provider: str
    secret: str
    created_at: str
    rotated_at: Optional[str]
    expires_at: Optional[str]
    is_active: bool
    created_by: Optional[str]

    def to_dict(self, reveal: bool = False) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "provider": self.provider,
            "secret": self.secret if reveal else mask_sensitive(self.secret),
            "created_at": self.created_at,
            "rotated_at": self.rotated_at,
            "expires_at": self.expires_at,
            "is_active": self.is_active,
            "created_by": self.created_by,
        }


class TenantSecretStore:
    """Secrets backed by the integration_secrets table."""

    def __init__(self, db: Database, cipher: Optional[SecretCipher] = None):
        self.db = db
        self.cipher = cipher or SecretCipher.from_config()

    def _row_to_secret(self, row) -> TenantSecret:
        return TenantSecret(
            id=row["id"],
            tenant_id=row["tenant_id"],
            provider=row["provider"],
            secret=self.cipher.decrypt(row["secret_ciphertext"]),
            created_at=row["created_at"],
            rotated_at=row["rotated_at"],
            expires_at=row["expires_at"],
            is_active=bool(row["is_active"]),
            created_by=row["created_by"],
        )

    def get_active_secret(self, tenant_id: str, provider: str) -> TenantSecret:
        """
        Raises:
            SecretNotConfiguredError: no active secret, or it cannot be read
        """
        try:
            cur = self.db.connection().execute(
                "SELECT * FROM integration_secrets WHERE tenant_id=? AND provider=? AND is_active=1 "
                "ORDER BY created_at DESC LIMIT 1",
                (tenant_id, provider)
            )
            row = cur.fetchone()
            secret = self._row_to_secret(row) if row else None
        except Exception as e:
            logger.error("Error fetching secret for tenant %s provider %s: %s", tenant_id, provider, e)
            raise SecretNotConfiguredError(tenant_id, provider) from e

        if secret is None:
            raise SecretNotConfiguredError(tenant_id, provider)
        return secret

    def list_secrets(self, tenant_id: str, provider: Optional[str] = None) -> List[TenantSecret]:
        """Active and inactive secrets, newest first. Read errors return []."""
        sql = "SELECT * FROM integration_secrets WHERE tenant_id=?"
        args: List[Any] = [tenant_id]
        if provider:
            sql += " AND provider=?"
            args.append(provider)
        sql += " ORDER BY created_at DESC, rowid DESC"

        try:
            cur = self.db.connection().execute(sql, args)
            return [self._row_to_secret(row) for row in cur.fetchall()]
        except Exception as e:
            logger.error("Error listing secrets for tenant %s: %s", tenant_id, e)
            return []

    def _insert_active(self, conn, tenant_id: str, provider: str, created_by: Optional[str]) -> TenantSecret:
        secret = TenantSecret(
            id=generate_id(),
            tenant_id=tenant_id,
            provider=provider,
            secret=generate_secret(),
            created_at=utc_iso(utc_now()),
            rotated_at=None,
            expires_at=None,
            is_active=True,
            created_by=created_by,
        )
        conn.execute(
            "INSERT INTO integration_secrets(id, tenant_id, provider, secret_ciphertext, created_at, "
            "rotated_at, expires_at, is_active, created_by) VALUES(?,?,?,?,?,?,?,?,?)",
            (secret.id, tenant_id, provider, self.cipher.encrypt(secret.secret), secret.created_at,
             None, None, 1, created_by)
        )
        return secret

    def create_secret(self, tenant_id: str, provider: str, created_by: Optional[str]) -> TenantSecret:
        """Generate a new active secret, deactivating any previous one."""
        now = utc_iso(utc_now())
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE integration_secrets SET is_active=0, rotated_at=? "
                "WHERE tenant_id=? AND provider=? AND is_active=1",
                (now, tenant_id, provider)
            )
            secret = self._insert_active(conn, tenant_id, provider, created_by)

        audit_log.secret_event(tenant_id, "created", provider, secret_id=secret.id, created_by=created_by)
        return secret

    def rotate_secret(self, tenant_id: str, provider: str, created_by: Optional[str]) -> TenantSecret:
        """Replace the active secret; the previous one expires after the grace period."""
        now = utc_now()
        expires_at = utc_iso(now + timedelta(days=ROTATION_GRACE_DAYS))
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE integration_secrets SET is_active=0, rotated_at=?, expires_at=? "
                "WHERE tenant_id=? AND provider=? AND is_active=1",
                (utc_iso(now), expires_at, tenant_id, provider)
            )
            secret = self._insert_active(conn, tenant_id, provider, created_by)

        audit_log.secret_event(tenant_id, "rotated", provider, secret_id=secret.id,
                               rotated_by=created_by, expires_at=expires_at)
        return secret

    def deactivate_secret(self, secret_id: str, tenant_id: str) -> None:
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE integration_secrets SET is_active=0, rotated_at=? WHERE id=? AND tenant_id=?",
                (utc_iso(utc_now()), secret_id, tenant_id)
            )
        audit_log.secret_event(tenant_id, "deactivated", secret_id=secret_id)
