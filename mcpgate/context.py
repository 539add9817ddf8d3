"""Per-call execution context passed from callers through the dispatcher to handlers."""

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional

from .evaluator import PolicyDecision, enforce_conditions
from .util import generate_id, utc_now_iso


@dataclass(frozen=True)
class ExecutionContext:
    """
    Who is calling, for which tenant, under which request.

    Roles are supplied by the identity provider; the core never derives
    them. Contexts are never persisted, only referenced from audit entries.
    """
    tenant_id: str
    roles: List[str] = field(default_factory=list)
    user_id: Optional[str] = None
    request_id: str = field(default_factory=generate_id)
    timestamp: str = field(default_factory=utc_now_iso)
    authorization: Optional[PolicyDecision] = None

    @classmethod
    def new(
        cls,
        tenant_id: str,
        roles: Optional[List[str]] = None,
        user_id: Optional[str] = None,
        request_id: Optional[str] = None
    ) -> 'ExecutionContext':
        return cls(
            tenant_id=tenant_id,
            roles=list(roles or []),
            user_id=user_id,
            request_id=request_id or generate_id(),
        )

    def with_authorization(self, decision: PolicyDecision) -> 'ExecutionContext':
        return replace(self, authorization=decision)

    def enforce_ownership(self, is_owner: Callable[[], bool]) -> None:
        """
        Check unresolved policy conditions against the target entity.

        Raises OwnershipRequiredError when the policy requires ownership and
        ``is_owner`` does not confirm it.
        """
        enforce_conditions(self.authorization, is_owner)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "roles": list(self.roles),
            "request_id": self.request_id,
            "timestamp": self.timestamp,
        }
