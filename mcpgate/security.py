"""
Security module for mcpgate.

Provides validation of caller-supplied identifiers, idempotency keys,
role headers and action payload size.
"""

import re
from typing import Any, List, Optional

from .util import canonicalize

# ============================================================
# Input Validation
# ============================================================

IDENTIFIER_PATTERN = re.compile(r'^[a-zA-Z0-9_.:@-]{1,128}$')
IDEMPOTENCY_KEY_PATTERN = re.compile(r'^[\x21-\x7e]{1,128}$')
ROLE_PATTERN = re.compile(r'^[a-z0-9_*-]{1,64}$')


class ValidationError(Exception):
    """Raised when input validation fails."""
    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


def validate_identifier(value: Any, field_name: str) -> str:
    """
    Validate a tenant or user identifier.

    Args:
        value: The value to validate
        field_name: Name of the field (for error messages)

    Returns:
        The stripped identifier

    Raises:
        ValidationError: If validation fails
    """
    if not isinstance(value, str):
        raise ValidationError(field_name, "must be a string")

    value = value.strip()

    if not value:
        raise ValidationError(field_name, "cannot be empty")

    if not IDENTIFIER_PATTERN.match(value):
        raise ValidationError(field_name, "contains invalid characters")

    return value


def validate_idempotency_key(value: Optional[str]) -> Optional[str]:
    """Validate an optional idempotency key (1-128 printable ASCII characters)."""
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if not IDEMPOTENCY_KEY_PATTERN.match(value):
        raise ValidationError("idempotency_key", "must be 1-128 printable characters")
    return value


def parse_roles(header: Optional[str]) -> List[str]:
    """
    Parse a comma separated role header into a de-duplicated list.

    Order is preserved; malformed role names are rejected.
    """
    if not header:
        return []
    roles: List[str] = []
    for raw in header.split(","):
        role = raw.strip().lower()
        if not role:
            continue
        if not ROLE_PATTERN.match(role):
            raise ValidationError("roles", f"invalid role name: {raw.strip()}")
        if role not in roles:
            roles.append(role)
    return roles


def payload_size(params: Any) -> int:
    return len(canonicalize(params))


def validate_payload_size(params: Any, limit: int) -> Optional[str]:
    """Return an error message if the payload exceeds ``limit`` bytes."""
    if payload_size(params) > limit:
        return f"Payload exceeds {limit // 1024}KB limit"
    return None
