"""
Utility functions for mcpgate.

Provides canonical JSON serialization, hashing, encoding, id and time helpers.
"""

import base64
import hashlib
import hmac
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Union


def canonicalize(obj: Any) -> bytes:
    """
    Convert object to canonical JSON bytes.

    Canonical JSON:
    - Lexicographically sorted keys
    - No whitespace
    - UTF-8 encoded
    """
    s = json.dumps(obj, sort_keys=True, separators=(',', ':'), ensure_ascii=False, default=str)
    return s.encode('utf-8')


def to_json(obj: Any) -> str:
    """Serialize a payload for storage. Non-JSON values fall back to str()."""
    return json.dumps(obj, sort_keys=True, default=str)


def from_json(s: Any) -> Any:
    if s is None:
        return None
    return json.loads(s)


def hmac_sha256_hex(key: Union[bytes, str], data: bytes) -> str:
    """Compute an HMAC-SHA256 signature and return as hex string."""
    if isinstance(key, str):
        key = key.encode('utf-8')
    return hmac.new(key, data, hashlib.sha256).hexdigest()


def b64e(b: bytes) -> str:
    """Base64 encode bytes to string."""
    return base64.b64encode(b).decode('ascii')


def b64d(s: str) -> bytes:
    """Base64 decode string to bytes."""
    return base64.b64decode(s.encode('ascii'))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_iso(dt: datetime) -> str:
    """Format an aware datetime as an RFC3339 string with a Z suffix."""
    return dt.isoformat().replace("+00:00", "Z")


def utc_now_iso() -> str:
    return utc_iso(utc_now())


def parse_iso(s: str) -> datetime:
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


def generate_id() -> str:
    """Generate a random UUID4 string used as a row id."""
    return str(uuid.uuid4())


def mask_sensitive(value: str, visible_chars: int = 4) -> str:
    """
    Mask a sensitive value, showing only the last N characters.
    Useful for logging.
    """
    if len(value) <= visible_chars:
        return '*' * len(value)
    return '*' * (len(value) - visible_chars) + value[-visible_chars:]
