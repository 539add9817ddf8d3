"""Workflow trigger action: resolve the tenant's webhook and post a signed payload."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..context import ExecutionContext
from ..errors import WorkflowNotConfiguredError
from ..registry import Action
from ..tenant_secrets import TenantSecretStore
from ..workflows import DEFAULT_PROVIDER, WorkflowClient, WorkflowStore


class TriggerWorkflowInput(BaseModel):
    workflow_key: str = Field(min_length=1, max_length=128)
    provider: str = DEFAULT_PROVIDER
    payload: Dict[str, Any] = Field(default_factory=dict)


class TriggerWorkflow(Action):
    name = "trigger_workflow"
    description = "Trigger a tenant-mapped workflow webhook with a signed payload."
    input_model = TriggerWorkflowInput
    resource_type = "workflow"

    def __init__(self, workflows: WorkflowStore, secrets: TenantSecretStore, client: Optional[WorkflowClient] = None):
        self.workflows = workflows
        self.secrets = secrets
        self.client = client or WorkflowClient()

    def execute(self, ctx: ExecutionContext, params: TriggerWorkflowInput) -> Dict[str, Any]:
        url = self.workflows.resolve_webhook(ctx.tenant_id, params.provider, params.workflow_key)
        if url is None:
            raise WorkflowNotConfiguredError(f"Workflow '{params.workflow_key}' is not configured")

        secret = self.secrets.get_active_secret(ctx.tenant_id, params.provider)
        body = {
            "workflow_key": params.workflow_key,
            "tenant_id": ctx.tenant_id,
            "user_id": ctx.user_id,
            "request_id": ctx.request_id,
            "payload": params.payload,
        }
        result = self.client.trigger(url, body, secret.secret, tenant_id=ctx.tenant_id,
                                     workflow_key=params.workflow_key)
        return {"workflow_key": params.workflow_key, **result}
