"""Built-in actions registered at startup."""

from typing import Optional

from ..registry import ActionRegistry
from ..tenant_secrets import TenantSecretStore
from ..workflows import WorkflowClient, WorkflowStore
from .platform import PLATFORM_ACTIONS
from .services import InMemoryPlatformServices, PlatformServices
from .workflow import TriggerWorkflow


def register_platform_actions(
    registry: ActionRegistry,
    services: PlatformServices,
    workflows: Optional[WorkflowStore] = None,
    secrets: Optional[TenantSecretStore] = None,
    client: Optional[WorkflowClient] = None
) -> ActionRegistry:
    """
    Register the platform actions against the given collaborators.

    trigger_workflow is only registered when both a workflow store and a
    secret store are supplied.
    """
    for action_cls in PLATFORM_ACTIONS:
        registry.register(action_cls(services))
    if workflows is not None and secrets is not None:
        registry.register(TriggerWorkflow(workflows, secrets, client))
    return registry


__all__ = [
    "InMemoryPlatformServices",
    "PlatformServices",
    "TriggerWorkflow",
    "register_platform_actions",
]
