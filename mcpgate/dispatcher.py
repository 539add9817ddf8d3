"""
mcpgate Action Dispatcher

The single entry point through which agents, UIs and scheduled jobs run
platform actions.

Dispatch:
1. Idempotency: a prior success for (tenant, idempotency key) is returned
   without re-running the handler.
2. Resolve the action by name (ACTION_NOT_FOUND).
3. Authorize against the tenant's effective policy (POLICY_DENIED).
4. Validate input against the action schema (VALIDATION_ERROR).
5. Run the handler; any exception becomes ACTION_FAILED.
6. Record exactly one audit entry for the outcome and return.

The dispatcher never raises to its caller.
"""

import json
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Hashable, Iterator, Optional, Tuple

from pydantic import BaseModel

from . import config
from .audit import ActionAuditService, ActionLogEntry, ActionStatus
from .context import ExecutionContext
from .errors import ActionNotFoundError, ActionValidationError, McpError, PolicyDeniedError
from .evaluator import PolicyDecision, PolicyEvaluationContext, evaluate
from .logging_config import audit_log, set_request_id
from .registry import Action, ActionRegistry, validate_params
from .security import validate_payload_size
from .tenant_policy import InMemoryTenantPolicyStore, TenantPolicyStore

logger = logging.getLogger(__name__)

ACTION_FAILED = "ACTION_FAILED"


class IdempotencyMode(str, Enum):
    """
    RACE_TOLERANT: check-then-act; two concurrent first calls with the same
        key may both run the handler.
    STRICT: calls sharing a (tenant, key) pair are serialized in-process and
        the cache is re-checked once the key is held.
    """
    RACE_TOLERANT = "race_tolerant"
    STRICT = "strict"


@dataclass
class ActionResult:
    """Uniform dispatch result: ``{ok: true, data}`` or ``{ok: false, error}``."""
    ok: bool
    data: Any = None
    error: Optional[Dict[str, str]] = None
    replayed: bool = False

    @property
    def error_code(self) -> Optional[str]:
        return self.error["code"] if self.error else None

    def to_dict(self) -> Dict[str, Any]:
        if self.ok:
            return {"ok": True, "data": self.data}
        return {"ok": False, "error": dict(self.error or {})}


class KeyedLocks:
    """Reference-counted locks keyed by arbitrary hashable values."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, Tuple[threading.Lock, int]] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            lock, count = self._locks.get(key, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._locks[key] = (lock, count + 1)

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                _, count = self._locks[key]
                if count <= 1:
                    del self._locks[key]
                else:
                    self._locks[key] = (lock, count - 1)


def _elapsed_ms(start: float) -> int:
    return max(0, int((time.monotonic() - start) * 1000))


def _normalize_result(result: Any) -> Any:
    """
    Reduce a handler result to plain JSON data, so the stored Success entry
    and any later replay carry exactly what the first caller received.
    """
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    return json.loads(json.dumps(result, default=str))


class ActionDispatcher:
    """
    Executes registered actions under policy, validation and audit.

    Usage:
        registry = ActionRegistry()
        register_platform_actions(registry, services)
        dispatcher = ActionDispatcher(registry, ActionAuditService(SqliteAuditLog(db)),
                                      SqliteTenantPolicyStore(db))

        result = dispatcher.execute(ctx, "list_projects", {"limit": 10}, idempotency_key="abc")
        if result.ok:
            ...
    """

    def __init__(
        self,
        registry: ActionRegistry,
        audit: Optional[ActionAuditService] = None,
        policy_store: Optional[TenantPolicyStore] = None,
        idempotency_mode: Optional[IdempotencyMode] = None,
        max_payload_bytes: Optional[int] = None
    ):
        self.registry = registry
        self.audit = audit or ActionAuditService()
        self.policy_store = policy_store or InMemoryTenantPolicyStore()
        self.idempotency_mode = IdempotencyMode(idempotency_mode or config.IDEMPOTENCY_MODE)
        self.max_payload_bytes = max_payload_bytes or config.MAX_PAYLOAD_BYTES
        self._key_locks = KeyedLocks()

    def execute(
        self,
        ctx: ExecutionContext,
        action_name: str,
        params: Any,
        idempotency_key: Optional[str] = None
    ) -> ActionResult:
        """
        Dispatch one action.

        Args:
            ctx: Caller identity, tenant and request id
            action_name: Registered action name
            params: Raw input, validated against the action's schema
            idempotency_key: Optional key making retries return the first
                successful result instead of running again

        Returns:
            ActionResult; never raises
        """
        set_request_id(ctx.request_id)

        if idempotency_key and self.idempotency_mode == IdempotencyMode.STRICT:
            with self._key_locks.hold((ctx.tenant_id, idempotency_key)):
                return self._dispatch(ctx, action_name, params, idempotency_key)

        return self._dispatch(ctx, action_name, params, idempotency_key)

    def authorize(self, ctx: ExecutionContext, action: Action) -> PolicyDecision:
        """Evaluate the tenant's effective policy for an action."""
        policy_set = self.policy_store.get_active_policy(ctx.tenant_id)
        decision = evaluate(
            ctx.roles,
            PolicyEvaluationContext(
                action_name=action.name,
                resource_type=action.resource_type,
                method="POST",
            ),
            policy_set,
        )
        audit_log.policy_decision(
            ctx.tenant_id, list(ctx.roles), decision.decision.value, decision.reason,
            action_name=action.name, resource_type=action.resource_type,
        )
        return decision

    def _dispatch(
        self,
        ctx: ExecutionContext,
        action_name: str,
        params: Any,
        idempotency_key: Optional[str]
    ) -> ActionResult:
        start = time.monotonic()

        if idempotency_key:
            cached = self.audit.find_by_idempotency_key(ctx.tenant_id, idempotency_key)
            if cached is not None:
                audit_log.action_replayed(ctx.tenant_id, action_name, idempotency_key)
                return ActionResult(ok=True, data=cached.result, replayed=True)

        action = self.registry.get(action_name)
        if action is None:
            return self._fail(ctx, action_name, params, start, ActionNotFoundError(action_name), idempotency_key)

        decision = self.authorize(ctx, action)
        if not decision.allowed:
            return self._fail(ctx, action_name, params, start, PolicyDeniedError(decision),
                              idempotency_key, decision)
        ctx = ctx.with_authorization(decision)

        try:
            size_error = validate_payload_size(params, self.max_payload_bytes)
            if size_error:
                raise ActionValidationError([size_error])
            validated = validate_params(action, params)
        except ActionValidationError as e:
            return self._fail(ctx, action_name, params, start, e, idempotency_key, decision)

        try:
            result = _normalize_result(action.execute(ctx, validated))
        except Exception as e:
            logger.exception("Action '%s' failed", action_name)
            message = str(e) or type(e).__name__
            audit_log.action_failed(ctx.tenant_id, action_name, message)
            return self._fail(ctx, action_name, params, start, McpError(message, ACTION_FAILED),
                              idempotency_key, decision)

        duration_ms = _elapsed_ms(start)
        self.audit.log_action(ActionLogEntry(
            tenant_id=ctx.tenant_id,
            user_id=ctx.user_id,
            action_name=action_name,
            input=params,
            result=result,
            status=ActionStatus.SUCCESS,
            duration_ms=duration_ms,
            idempotency_key=idempotency_key,
            request_id=ctx.request_id,
            policy_result=decision.to_dict(),
        ))
        audit_log.action_dispatched(ctx.tenant_id, action_name, ActionStatus.SUCCESS.value, duration_ms)
        return ActionResult(ok=True, data=result)

    def _fail(
        self,
        ctx: ExecutionContext,
        action_name: str,
        params: Any,
        start: float,
        error: McpError,
        idempotency_key: Optional[str],
        decision: Optional[PolicyDecision] = None
    ) -> ActionResult:
        duration_ms = _elapsed_ms(start)
        self.audit.log_action(ActionLogEntry(
            tenant_id=ctx.tenant_id,
            user_id=ctx.user_id,
            action_name=action_name,
            input=params,
            result=None,
            status=ActionStatus.ERROR,
            error_code=error.code,
            error_message=error.message,
            duration_ms=duration_ms,
            idempotency_key=idempotency_key,
            request_id=ctx.request_id,
            policy_result=decision.to_dict() if decision is not None else None,
        ))
        audit_log.action_dispatched(ctx.tenant_id, action_name, ActionStatus.ERROR.value, duration_ms, error.code)
        return ActionResult(ok=False, error=error.to_dict())
