"""
mcpgate Action Registry

Actions are named, schema-validated units of business logic. Each action
declares a pydantic model for its input; the registry maps names to
actions and is built once at startup, then handed to the dispatcher.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError

from .context import ExecutionContext
from .errors import ActionValidationError

logger = logging.getLogger(__name__)


class EmptyInput(BaseModel):
    pass


class Action(ABC):
    """
    Base class for dispatchable actions.

    Subclasses set ``name``, ``description`` and ``input_model`` and
    implement ``execute``. ``resource_type`` scopes resource filters in
    policy rules.
    """

    name: str = ""
    description: str = ""
    input_model: Type[BaseModel] = EmptyInput
    resource_type: Optional[str] = None

    @abstractmethod
    def execute(self, ctx: ExecutionContext, params: BaseModel) -> Any:
        """Run the action with validated params. May raise."""

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "resource_type": self.resource_type,
            "input_schema": self.input_model.model_json_schema(),
        }


class FunctionAction(Action):
    """Adapts a plain callable ``func(ctx, params)`` to the Action interface."""

    def __init__(
        self,
        name: str,
        func: Callable[[ExecutionContext, BaseModel], Any],
        input_model: Type[BaseModel] = EmptyInput,
        description: str = "",
        resource_type: Optional[str] = None
    ):
        self.name = name
        self.func = func
        self.input_model = input_model
        self.description = description
        self.resource_type = resource_type

    def execute(self, ctx: ExecutionContext, params: BaseModel) -> Any:
        return self.func(ctx, params)


def format_validation_errors(err: ValidationError) -> List[str]:
    """Render pydantic errors as "field.path: message" strings."""
    messages = []
    for e in err.errors():
        loc = ".".join(str(p) for p in e.get("loc", ())) or "input"
        messages.append(f"{loc}: {e.get('msg', 'invalid')}")
    return messages


def validate_params(action: Action, raw: Any) -> BaseModel:
    """
    Validate raw input against the action's model.

    Raises:
        ActionValidationError: carrying every field error, not just the first
    """
    try:
        return action.input_model.model_validate(raw if raw is not None else {})
    except ValidationError as e:
        raise ActionValidationError(format_validation_errors(e)) from e


class ActionRegistry:
    """
    Name -> Action table.

    Registering an existing name replaces the previous action; this is not
    expected outside tests.
    """

    def __init__(self):
        self._actions: Dict[str, Action] = {}

    def register(self, action: Action) -> Action:
        if not action.name:
            raise ValueError("Action must have a name")
        if action.name in self._actions:
            logger.warning("Replacing registered action: %s", action.name)
        self._actions[action.name] = action
        logger.debug("Registered action: %s", action.name)
        return action

    def action(self, name: str, input_model: Type[BaseModel] = EmptyInput,
               description: str = "", resource_type: Optional[str] = None):
        """
        Decorator registering a function as an action.

        Usage:
            @registry.action("list_projects", ListProjectsInput)
            def list_projects(ctx, params):
                ...
        """
        def decorator(func: Callable):
            self.register(FunctionAction(name, func, input_model, description or (func.__doc__ or "").strip(),
                                         resource_type))
            return func
        return decorator

    def get(self, name: str) -> Optional[Action]:
        return self._actions.get(name)

    def list_actions(self) -> List[Action]:
        return list(self._actions.values())

    def manifest(self) -> List[Dict[str, Any]]:
        return [a.describe() for a in sorted(self.list_actions(), key=lambda a: a.name)]

    def __contains__(self, name: str) -> bool:
        return name in self._actions

    def __len__(self) -> int:
        return len(self._actions)
