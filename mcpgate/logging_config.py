"""
Logging configuration for mcpgate.

Provides structured JSON logging and the audit side channel used when
the durable action log cannot be written.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, List, Optional

# Context variable for request ID tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs in a consistent JSON format suitable for
    log aggregation systems like ELK, Splunk, or CloudWatch.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class AuditLogger:
    """
    Specialized logger for action and policy events.

    This is the process-log side channel: it records dispatch outcomes,
    policy changes and, most importantly, failures to write the durable
    action log.
    """

    def __init__(self, name: str = "mcpgate.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        """Internal logging method with extra fields."""
        extra = {
            "event_type": event_type,
            "request_id": kwargs.pop("request_id", None) or request_id_var.get(),
            **kwargs
        }

        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "",
            0,
            f"{event_type}: {kwargs.get('message', '')}",
            (),
            None
        )
        record.extra_fields = extra
        self._logger.handle(record)

    def action_dispatched(
        self,
        tenant_id: str,
        action_name: str,
        status: str,
        duration_ms: int,
        error_code: Optional[str] = None
    ) -> None:
        """Log the outcome of a dispatch."""
        level = logging.INFO if status == "success" else logging.WARNING
        self._log(
            level,
            "mcp.action",
            tenant_id=tenant_id,
            action=action_name,
            status=status,
            latency_ms=duration_ms,
            error_code=error_code,
            message=f"Action {action_name} finished with {status}"
        )

    def action_replayed(self, tenant_id: str, action_name: str, idempotency_key: str) -> None:
        """Log a cached result returned for an idempotency key."""
        self._log(
            logging.INFO,
            "mcp.action.idempotent",
            tenant_id=tenant_id,
            action=action_name,
            idempotency_key=idempotency_key,
            message=f"Returning cached result for idempotency key {idempotency_key}"
        )

    def action_failed(self, tenant_id: str, action_name: str, error: str) -> None:
        """Log a handler fault."""
        self._log(
            logging.ERROR,
            "mcp.action.error",
            tenant_id=tenant_id,
            action=action_name,
            error=error,
            message=f"Action {action_name} failed: {error}"
        )

    def policy_decision(
        self,
        tenant_id: str,
        roles: List[str],
        decision: str,
        reason: str,
        action_name: Optional[str] = None,
        resource_type: Optional[str] = None
    ) -> None:
        """Log an authorization decision."""
        level = logging.INFO if decision == "allowed" else logging.WARNING
        self._log(
            level,
            "mcp.policy.decision",
            tenant_id=tenant_id,
            roles=roles,
            decision=decision,
            reason=reason,
            action=action_name,
            resource_type=resource_type,
            message=f"Policy decision: {decision}"
        )

    def audit_write_failed(self, tenant_id: str, action_name: str, error: str) -> None:
        """Log a failure to persist an action log entry."""
        self._log(
            logging.ERROR,
            "mcp.audit.failed",
            tenant_id=tenant_id,
            action=action_name,
            error=error,
            message=f"Audit write failed for {action_name}"
        )

    def audit_read_failed(self, tenant_id: str, operation: str, error: str) -> None:
        self._log(
            logging.ERROR,
            "mcp.audit.read_failed",
            tenant_id=tenant_id,
            operation=operation,
            error=error,
            message=f"Audit {operation} failed"
        )

    def policy_changed(self, tenant_id: str, change: str, policy_id: str, **details) -> None:
        """Log a tenant policy version change."""
        self._log(
            logging.INFO,
            "mcp.policy.changed",
            tenant_id=tenant_id,
            change=change,
            policy_id=policy_id,
            **details,
            message=f"Tenant policy {change}: {policy_id}"
        )

    def secret_event(self, tenant_id: str, event: str, provider: Optional[str] = None, **details) -> None:
        """Log a tenant secret lifecycle event. Never pass secret material."""
        self._log(
            logging.INFO,
            f"mcp.secret.{event}",
            tenant_id=tenant_id,
            provider=provider,
            **details,
            message=f"Secret {event}"
        )

    def workflow_triggered(self, tenant_id: str, workflow_key: str, status_code: int) -> None:
        level = logging.INFO if 200 <= status_code < 300 else logging.WARNING
        self._log(
            level,
            "mcp.workflow.triggered",
            tenant_id=tenant_id,
            workflow_key=workflow_key,
            status_code=status_code,
            message=f"Workflow {workflow_key} responded {status_code}"
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting (recommended for production)
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Set the request ID for the current context.

    Args:
        request_id: Request ID to set, or None to generate one

    Returns:
        The request ID that was set
    """
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


# Global audit logger instance
audit_log = AuditLogger()
