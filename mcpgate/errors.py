"""
Error types for mcpgate.

Every error carries a stable machine-readable code. The dispatcher turns
these into uniform ``{code, message}`` error results; the HTTP layer maps
codes to status codes.
"""

from typing import Any, Dict, List, Optional


class McpError(Exception):
    """Base class for all mcpgate errors."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        if code:
            self.code = code
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class ActionNotFoundError(McpError):
    code = "ACTION_NOT_FOUND"

    def __init__(self, action_name: str):
        self.action_name = action_name
        super().__init__(f"Action '{action_name}' not found")


class ActionValidationError(McpError):
    """Raised when action input fails schema validation."""

    code = "VALIDATION_ERROR"

    def __init__(self, field_errors: List[str]):
        self.field_errors = field_errors
        super().__init__(", ".join(field_errors) if field_errors else "Invalid input")


class PolicyDeniedError(McpError):
    code = "POLICY_DENIED"

    def __init__(self, decision):
        self.decision = decision
        super().__init__(decision.reason)


class OwnershipRequiredError(McpError):
    code = "OWNERSHIP_REQUIRED"


class SecretNotConfiguredError(McpError):
    code = "SECRET_NOT_CONFIGURED"

    def __init__(self, tenant_id: str, provider: str):
        self.tenant_id = tenant_id
        self.provider = provider
        super().__init__(f"No active secret configured for provider '{provider}'")


class WorkflowNotConfiguredError(McpError):
    code = "WORKFLOW_NOT_CONFIGURED"


class WorkflowError(McpError):
    code = "WORKFLOW_FAILED"

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class InvalidCursorError(McpError):
    code = "INVALID_CURSOR"

    def __init__(self):
        super().__init__("Invalid cursor format")


class InvalidResourceTypeError(McpError):
    code = "VALIDATION_ERROR"

    def __init__(self, resource_type: str, valid_types):
        self.resource_type = resource_type
        super().__init__(
            f"Invalid resource type: {resource_type}. Valid types: {', '.join(valid_types)}"
        )
