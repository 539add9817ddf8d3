"""
mcpgate Policy Evaluator

Decides whether a caller's roles may perform an action or touch a resource
type under a policy set.

Algorithm:
1. Deny pass: every deny rule, in order. The first match denies.
2. Allow pass: every allow rule, in order. The first match allows; an
   ownerOnly condition is returned unresolved for the caller to verify.
3. Default deny.

The evaluator is stateless and never raises for a well-formed policy set.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from .errors import OwnershipRequiredError, PolicyDeniedError
from .policy import DEFAULT_POLICY, WILDCARD, Effect, PolicyRule
from .util import utc_now_iso

OWNER_ONLY = "owner_only"


class Decision(str, Enum):
    ALLOWED = "allowed"
    DENIED = "denied"


@dataclass(frozen=True)
class PolicyEvaluationContext:
    """What is being accessed. Unset fields do not constrain rule filters."""
    resource_type: Optional[str] = None
    action_name: Optional[str] = None
    resource_id: Optional[str] = None
    method: Optional[str] = None


@dataclass
class PolicyDecision:
    """
    Result of a policy evaluation.

    unresolved_conditions lists conditions the evaluator could not check
    from roles alone; an allowed decision with unresolved conditions must
    not be honored until they are enforced.
    """
    decision: Decision
    reason: str
    checked_roles: List[str]
    checked_at: str = field(default_factory=utc_now_iso)
    matched_rule: Optional[PolicyRule] = None
    unresolved_conditions: List[str] = field(default_factory=list)

    @property
    def allowed(self) -> bool:
        return self.decision == Decision.ALLOWED

    def requires_ownership(self) -> bool:
        return OWNER_ONLY in self.unresolved_conditions

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "decision": self.decision.value,
            "reason": self.reason,
            "checked_roles": list(self.checked_roles),
            "checked_at": self.checked_at,
        }
        if self.matched_rule is not None:
            d["matched_rule"] = self.matched_rule.to_dict()
        if self.unresolved_conditions:
            d["unresolved_conditions"] = list(self.unresolved_conditions)
        return d


# ============================================================
# Matching
# ============================================================

def role_matches(rule_roles: Sequence[str], caller_roles: Sequence[str]) -> bool:
    """True if the rule names "*" or any of the caller's roles."""
    if WILDCARD in rule_roles:
        return True
    return any(role in caller_roles for role in rule_roles)


def field_matches(patterns: Sequence[str], value: str) -> bool:
    """
    Match a resource type or action name against rule patterns.

    Supports exact match, "*" and namespaced "app.*" / "app.action"
    patterns split on the first dot.
    """
    if WILDCARD in patterns:
        return True

    for pattern in patterns:
        if pattern == value:
            return True

        if "." in pattern and "." in value:
            pattern_ns, pattern_tail = pattern.split(".", 1)
            value_ns, value_tail = value.split(".", 1)
            if pattern_ns == value_ns and (pattern_tail == WILDCARD or pattern_tail == value_tail):
                return True

    return False


def rule_matches(rule: PolicyRule, roles: Sequence[str], ctx: PolicyEvaluationContext) -> bool:
    if not role_matches(rule.roles, roles):
        return False

    # Filters only constrain when both the rule and the context supply a value
    if rule.resources is not None and ctx.resource_type:
        if not field_matches(rule.resources, ctx.resource_type):
            return False

    if rule.actions is not None and ctx.action_name:
        if not field_matches(rule.actions, ctx.action_name):
            return False

    return True


# ============================================================
# Evaluation
# ============================================================

def evaluate(
    roles: Optional[Sequence[str]],
    ctx: PolicyEvaluationContext,
    policy_set: Optional[Sequence[PolicyRule]] = None
) -> PolicyDecision:
    """
    Evaluate a policy set for the given roles and target.

    Args:
        roles: The caller's resolved roles (any one matching role suffices)
        ctx: The resource type and/or action being accessed
        policy_set: Rules to evaluate; the platform default when omitted

    Returns:
        PolicyDecision with the matched rule as evidence
    """
    roles = list(roles or [])
    rules = DEFAULT_POLICY if policy_set is None else policy_set
    role_list = ", ".join(roles)

    for rule in rules:
        if rule.effect == Effect.DENY and rule_matches(rule, roles, ctx):
            return PolicyDecision(
                decision=Decision.DENIED,
                reason=f"Deny rule matched for roles: {role_list}",
                checked_roles=roles,
                matched_rule=rule,
            )

    for rule in rules:
        if rule.effect == Effect.ALLOW and rule_matches(rule, roles, ctx):
            if rule.conditions is not None and rule.conditions.owner_only:
                return PolicyDecision(
                    decision=Decision.ALLOWED,
                    reason="ownerOnly condition requires verification at data layer",
                    checked_roles=roles,
                    matched_rule=rule,
                    unresolved_conditions=[OWNER_ONLY],
                )
            return PolicyDecision(
                decision=Decision.ALLOWED,
                reason="Allow rule matched",
                checked_roles=roles,
                matched_rule=rule,
            )

    return PolicyDecision(
        decision=Decision.DENIED,
        reason=f"No matching allow rule for roles: {role_list}",
        checked_roles=roles,
    )


def can_access_resource(
    roles: Sequence[str],
    resource_type: str,
    operation: str,
    policy_set: Optional[Sequence[PolicyRule]] = None
) -> PolicyDecision:
    """Check a read ("list" or "get") on a resource type."""
    return evaluate(
        roles,
        PolicyEvaluationContext(resource_type=resource_type, action_name=operation, method="GET"),
        policy_set,
    )


def can_execute_action(
    roles: Sequence[str],
    action_name: str,
    policy_set: Optional[Sequence[PolicyRule]] = None,
    resource_type: Optional[str] = None
) -> PolicyDecision:
    """Check whether an action may be executed."""
    return evaluate(
        roles,
        PolicyEvaluationContext(resource_type=resource_type, action_name=action_name, method="POST"),
        policy_set,
    )


# ============================================================
# Enforcement of unresolved conditions
# ============================================================

def enforce_conditions(
    decision: Optional[PolicyDecision],
    is_owner: Optional[Callable[[], bool]] = None
) -> None:
    """
    Honor a decision only after its unresolved conditions are checked.

    Args:
        decision: The decision returned by evaluate()
        is_owner: Ownership check against the target entity; required when
            the decision carries an owner_only condition

    Raises:
        PolicyDeniedError: The decision is a denial
        OwnershipRequiredError: Ownership is required and not proven
    """
    if decision is None:
        return
    if not decision.allowed:
        raise PolicyDeniedError(decision)
    if decision.requires_ownership():
        if is_owner is None or not is_owner():
            raise OwnershipRequiredError("Caller does not own the target resource")
