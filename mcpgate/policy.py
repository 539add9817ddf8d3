"""
mcpgate Policy Model

Declarative allow/deny rules keyed by role, optionally scoped to resource
types and action names. A policy set is an ordered list of rules.

Stored JSON shape of a rule:

    {
        "role": ["viewer"] | "viewer",
        "resource": ["project"],          # optional
        "action": ["list_projects"],      # optional
        "effect": "allow" | "deny",
        "conditions": {"tenantMatch": true, "ownerOnly": true}   # optional
    }
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from . import config

logger = logging.getLogger(__name__)

WILDCARD = "*"


class Effect(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class RuleConditions:
    """
    Conditions attached to an allow rule.

    tenant_match is enforced by tenant-scoped storage, owner_only must be
    verified by a layer that can see the target entity.
    """
    tenant_match: bool = False
    owner_only: bool = False

    def is_empty(self) -> bool:
        return not (self.tenant_match or self.owner_only)

    def to_dict(self) -> Dict[str, bool]:
        d = {}
        if self.tenant_match:
            d["tenantMatch"] = True
        if self.owner_only:
            d["ownerOnly"] = True
        return d

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional['RuleConditions']:
        if not data:
            return None
        return cls(
            tenant_match=bool(data.get("tenantMatch", data.get("tenant_match", False))),
            owner_only=bool(data.get("ownerOnly", data.get("owner_only", False))),
        )


def _as_tuple(value: Union[None, str, Sequence[str]], field_name: str) -> Optional[Tuple[str, ...]]:
    if value is None:
        return None
    if isinstance(value, str):
        return (value,)
    items = tuple(value)
    for item in items:
        if not isinstance(item, str):
            raise ValueError(f"Rule {field_name} entries must be strings, got {item!r}")
    return items


@dataclass(frozen=True)
class PolicyRule:
    """
    A single allow/deny statement.

    - roles: role names; "*" matches every caller
    - resources: optional resource type filter
    - actions: optional action name filter ("app.*" matches "app.<anything>")
    - effect: allow or deny
    - conditions: optional conditions on an allow rule
    """
    roles: Tuple[str, ...]
    effect: Effect
    resources: Optional[Tuple[str, ...]] = None
    actions: Optional[Tuple[str, ...]] = None
    conditions: Optional[RuleConditions] = field(default=None)

    def __post_init__(self):
        self._validate()

    def _validate(self):
        if not self.roles:
            raise ValueError("Rule must name at least one role")
        if not isinstance(self.effect, Effect):
            raise ValueError(f"Unknown effect: {self.effect!r}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the stored JSON shape."""
        d: Dict[str, Any] = {
            "role": list(self.roles),
            "effect": self.effect.value,
        }
        if self.resources is not None:
            d["resource"] = list(self.resources)
        if self.actions is not None:
            d["action"] = list(self.actions)
        if self.conditions is not None and not self.conditions.is_empty():
            d["conditions"] = self.conditions.to_dict()
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PolicyRule':
        """Create a PolicyRule from its stored JSON shape."""
        if not isinstance(data, dict):
            raise ValueError(f"Rule must be an object, got {type(data).__name__}")

        roles = _as_tuple(data.get("role", data.get("roles")), "role")
        effect_raw = data.get("effect")
        try:
            effect = Effect(str(effect_raw).lower())
        except ValueError:
            raise ValueError(f"Unknown effect: {effect_raw!r}") from None

        return cls(
            roles=roles or (),
            effect=effect,
            resources=_as_tuple(data.get("resource"), "resource"),
            actions=_as_tuple(data.get("action"), "action"),
            conditions=RuleConditions.from_dict(data.get("conditions")),
        )


PolicySet = List[PolicyRule]


def allow(roles, actions=None, resources=None, owner_only=False, tenant_match=False) -> PolicyRule:
    """Shorthand for building allow rules in code."""
    conditions = None
    if owner_only or tenant_match:
        conditions = RuleConditions(tenant_match=tenant_match, owner_only=owner_only)
    return PolicyRule(
        roles=_as_tuple(roles, "role"),
        effect=Effect.ALLOW,
        resources=_as_tuple(resources, "resource"),
        actions=_as_tuple(actions, "action"),
        conditions=conditions,
    )


def deny(roles, actions=None, resources=None) -> PolicyRule:
    """Shorthand for building deny rules in code."""
    return PolicyRule(
        roles=_as_tuple(roles, "role"),
        effect=Effect.DENY,
        resources=_as_tuple(resources, "resource"),
        actions=_as_tuple(actions, "action"),
    )


def parse_policy_set(data: Any) -> PolicySet:
    """Parse a stored policy JSON list. Raises ValueError on bad input."""
    if not isinstance(data, list):
        raise ValueError("Policy set must be a list of rules")
    return [PolicyRule.from_dict(item) for item in data]


def dump_policy_set(rules: Sequence[PolicyRule]) -> List[Dict[str, Any]]:
    return [rule.to_dict() for rule in rules]


# ============================================================
# Platform default policy
# ============================================================

ADMIN_ROLES = ("platform_owner", "tenant_owner", "tenant_admin")
READ_ROLES = ("project_owner", "analyst", "contributor", "viewer")

DEFAULT_POLICY: Tuple[PolicyRule, ...] = (
    # Platform and tenant admins have full access
    allow(ADMIN_ROLES),
    # Project managers
    allow(("project_owner", "analyst"),
          actions=("create_project", "assign_task", "list_projects", "search_companies")),
    allow("contributor", actions=("assign_task", "list_projects")),
    allow("viewer", actions=("list_projects", "search_companies")),
    # Suppliers act on their own data only
    allow("supplier", actions="evaluate_supplier", owner_only=True),
    allow("supplier", resources="supplier", actions="get", owner_only=True),
    # External partners
    allow("external_partner", actions="search_companies"),
    allow("external_partner", resources=("company", "external_system"), actions=("list", "get")),
    # Project-level roles can read every resource type
    allow(READ_ROLES, actions=("list", "get")),
)


def load_default_policy(path: Optional[str] = None) -> PolicySet:
    """
    Return the platform default policy.

    If a policy file is configured it replaces the built-in rules. A file
    that cannot be read or parsed falls back to the built-in rules.
    """
    path = path if path is not None else config.DEFAULT_POLICY_PATH
    if not path:
        return list(DEFAULT_POLICY)
    try:
        return parse_policy_set(config.load_json_cached(path))
    except (OSError, ValueError) as e:
        logger.error("Failed to load default policy from %s: %s", path, e)
        return list(DEFAULT_POLICY)
