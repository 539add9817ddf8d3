from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from . import config
from .context import ExecutionContext
from .errors import McpError, PolicyDeniedError
from .evaluator import PolicyEvaluationContext, can_execute_action, evaluate
from .gateway import Gateway, build_gateway
from .logging_config import configure_logging
from .models import AuthorizeRequest, PolicyUpsertRequest
from .policy import dump_policy_set, parse_policy_set
from .security import ValidationError, parse_roles, validate_identifier, validate_idempotency_key

STATUS_BY_CODE = {
    "VALIDATION_ERROR": 400,
    "INVALID_CURSOR": 400,
    "FORBIDDEN_TENANT": 403,
    "POLICY_DENIED": 403,
    "OWNERSHIP_REQUIRED": 403,
    "ACTION_NOT_FOUND": 404,
    "NOT_FOUND": 404,
    "ACTION_FAILED": 500,
    "INTERNAL_ERROR": 500,
}

# Administrative operations are authorized through the same policy as actions.
MANAGE_POLICIES = "manage_policies"
VIEW_ACTION_LOGS = "view_action_logs"


def status_for(code: Optional[str]) -> int:
    return STATUS_BY_CODE.get(code or "", 500)


def error_response(code: str, message: str, request_id: Optional[str] = None) -> JSONResponse:
    headers = {"X-Request-Id": request_id} if request_id else None
    return JSONResponse(
        status_code=status_for(code),
        content={"ok": False, "error": {"code": code, "message": message}},
        headers=headers,
    )


def ok(data: Any, ctx: Optional[ExecutionContext] = None) -> JSONResponse:
    headers = {"X-Request-Id": ctx.request_id} if ctx else None
    return JSONResponse(status_code=200, content={"ok": True, "data": data}, headers=headers)


def get_gateway(request: Request) -> Gateway:
    gw = request.app.state.gateway
    if gw is None:
        raise McpError("Gateway not initialised")
    return gw


def get_context(
    x_tenant_id: Optional[str] = Header(None),
    x_user_id: Optional[str] = Header(None),
    x_user_roles: Optional[str] = Header(None),
    x_request_id: Optional[str] = Header(None),
) -> ExecutionContext:
    """Build the caller context from identity headers set by the upstream gateway."""
    if not x_tenant_id:
        raise McpError("Tenant context is required", "FORBIDDEN_TENANT")
    tenant_id = validate_identifier(x_tenant_id, "tenant_id")
    user_id = validate_identifier(x_user_id, "user_id") if x_user_id else None
    request_id = validate_identifier(x_request_id, "request_id") if x_request_id else None
    return ExecutionContext.new(tenant_id, parse_roles(x_user_roles), user_id, request_id)


def require_admin_operation(gw: Gateway, ctx: ExecutionContext, operation: str) -> None:
    decision = can_execute_action(ctx.roles, operation, gw.policy_store.get_active_policy(ctx.tenant_id))
    if not decision.allowed:
        raise PolicyDeniedError(decision)


def create_app(gateway: Optional[Gateway] = None) -> FastAPI:
    """
    Build the HTTP app.

    With no gateway, one is built from configuration at startup.
    """
    docs_url = None if config.is_production() else "/docs"
    app = FastAPI(title="mcpgate", docs_url=docs_url, redoc_url=None)
    app.state.gateway = gateway

    @app.on_event("startup")
    def _startup():
        if app.state.gateway is None:
            configure_logging("DEBUG" if config.is_debug() else config.LOG_LEVEL, config.LOG_JSON)
            app.state.gateway = build_gateway()

    @app.exception_handler(McpError)
    def _mcp_error(request: Request, exc: McpError):
        return error_response(exc.code, exc.message)

    @app.exception_handler(ValidationError)
    def _validation_error(request: Request, exc: ValidationError):
        return error_response("VALIDATION_ERROR", str(exc))

    @app.exception_handler(RequestValidationError)
    def _request_validation_error(request: Request, exc: RequestValidationError):
        messages = []
        for e in exc.errors():
            loc = ".".join(str(p) for p in e.get("loc", ()))
            messages.append(f"{loc}: {e.get('msg', 'invalid')}")
        return error_response("VALIDATION_ERROR", ", ".join(messages) or "Invalid request")

    @app.get("/health")
    def health(gw: Gateway = Depends(get_gateway)):
        body: Dict[str, Any] = {"status": "ok", "env": config.ENV, "actions": len(gw.registry)}
        body["config"] = config.validate_config()
        if gw.db is not None:
            body["db"] = gw.db.stats()
        return body

    @app.get("/manifest")
    def manifest(gw: Gateway = Depends(get_gateway)):
        return {"actions": gw.registry.manifest()}

    @app.post("/actions/{action_name}")
    def run_action(
        action_name: str,
        params: Optional[Dict[str, Any]] = Body(None),
        idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
        ctx: ExecutionContext = Depends(get_context),
        gw: Gateway = Depends(get_gateway),
    ):
        key = validate_idempotency_key(idempotency_key)
        result = gw.dispatcher.execute(ctx, action_name, params or {}, idempotency_key=key)
        status = 200 if result.ok else status_for(result.error_code)
        return JSONResponse(status_code=status, content=result.to_dict(),
                            headers={"X-Request-Id": ctx.request_id})

    @app.get("/resources/{resource_type}")
    def list_resources(
        resource_type: str,
        q: Optional[str] = Query(None, max_length=200),
        limit: int = Query(25, ge=1),
        cursor: Optional[str] = Query(None, max_length=1024),
        ctx: ExecutionContext = Depends(get_context),
        gw: Gateway = Depends(get_gateway),
    ):
        page = gw.resources.list(ctx, resource_type, q=q, limit=limit, cursor=cursor)
        return ok(page.to_dict(), ctx)

    @app.get("/resources/{resource_type}/{resource_id}")
    def get_resource(
        resource_type: str,
        resource_id: str,
        ctx: ExecutionContext = Depends(get_context),
        gw: Gateway = Depends(get_gateway),
    ):
        record = gw.resources.get(ctx, resource_type, resource_id)
        if record is None:
            return error_response("NOT_FOUND", f"{resource_type} not found", ctx.request_id)
        return ok(record, ctx)

    @app.post("/authorize")
    def authorize(
        req: AuthorizeRequest,
        ctx: ExecutionContext = Depends(get_context),
        gw: Gateway = Depends(get_gateway),
    ):
        decision = evaluate(
            ctx.roles,
            PolicyEvaluationContext(
                resource_type=req.resource,
                action_name=req.action,
                resource_id=req.resource_id,
                method=req.method,
            ),
            gw.policy_store.get_active_policy(ctx.tenant_id),
        )
        return ok(decision.to_dict(), ctx)

    @app.get("/logs")
    def action_logs(
        limit: int = Query(25, ge=1, le=100),
        ctx: ExecutionContext = Depends(get_context),
        gw: Gateway = Depends(get_gateway),
    ):
        require_admin_operation(gw, ctx, VIEW_ACTION_LOGS)
        entries = gw.audit.get_logs_for_tenant(ctx.tenant_id, limit)
        return ok([e.to_dict() for e in entries], ctx)

    @app.get("/policies")
    def list_policies(ctx: ExecutionContext = Depends(get_context), gw: Gateway = Depends(get_gateway)):
        require_admin_operation(gw, ctx, MANAGE_POLICIES)
        return ok([v.to_dict() for v in gw.policy_store.list_policies(ctx.tenant_id)], ctx)

    @app.get("/policies/effective")
    def effective_policy(ctx: ExecutionContext = Depends(get_context), gw: Gateway = Depends(get_gateway)):
        return ok(dump_policy_set(gw.policy_store.get_active_policy(ctx.tenant_id)), ctx)

    @app.post("/policies")
    def upsert_policy(
        req: PolicyUpsertRequest,
        ctx: ExecutionContext = Depends(get_context),
        gw: Gateway = Depends(get_gateway),
    ):
        require_admin_operation(gw, ctx, MANAGE_POLICIES)
        try:
            rules = parse_policy_set(req.rules)
        except ValueError as e:
            return error_response("VALIDATION_ERROR", str(e), ctx.request_id)
        version = gw.policy_store.upsert_policy(ctx.tenant_id, rules, req.version, ctx.user_id)
        return ok(version.to_dict(), ctx)

    @app.post("/policies/{policy_id}/activate")
    def activate_policy(policy_id: str, ctx: ExecutionContext = Depends(get_context),
                        gw: Gateway = Depends(get_gateway)):
        require_admin_operation(gw, ctx, MANAGE_POLICIES)
        try:
            gw.policy_store.activate_policy(policy_id, ctx.tenant_id)
        except KeyError:
            return error_response("NOT_FOUND", "Policy not found", ctx.request_id)
        return ok({"id": policy_id, "is_active": True}, ctx)

    @app.post("/policies/{policy_id}/deactivate")
    def deactivate_policy(policy_id: str, ctx: ExecutionContext = Depends(get_context),
                          gw: Gateway = Depends(get_gateway)):
        require_admin_operation(gw, ctx, MANAGE_POLICIES)
        try:
            gw.policy_store.deactivate_policy(policy_id, ctx.tenant_id)
        except KeyError:
            return error_response("NOT_FOUND", "Policy not found", ctx.request_id)
        return ok({"id": policy_id, "is_active": False}, ctx)

    return app


app = create_app()
