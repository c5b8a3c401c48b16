"""Action tool and the decorator-based action registry.

Actions are plain Python callables registered by name:

    @action("create-readme", required=["title"])
    def create_readme(params, context):
        ...

An action receives its substituted parameters and the step context. It may be
sync or async and may return an ``ActionResult`` (files and variables to
record), a dict (stored as the step output) or None.
"""

import inspect
import logging
from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Callable

from ..context import StepContext
from ..context import StepExecutionOptions
from ..context import StepResult
from ..context import now
from ..errors import ActionNotFoundError
from ..errors import InvalidParameterError
from ..models import ActionStep
from ..variables import substitute_recursive
from .base import Tool
from .base import ToolValidationResult

logger = logging.getLogger(__name__)


@dataclass
class ActionResult:
    """What an action reports back to the step."""

    output: dict[str, Any] = field(default_factory=dict)
    files_created: list[str] = field(default_factory=list)
    files_modified: list[str] = field(default_factory=list)
    variables: dict[str, Any] = field(default_factory=dict)  # Merged into context variables


@dataclass
class ActionDefinition:
    name: str
    func: Callable[..., Any]
    required: list[str] = field(default_factory=list)
    description: str = ""
    category: str = "general"


class ActionRegistry:
    """Named actions available to action steps."""

    def __init__(self):
        self._actions: dict[str, ActionDefinition] = {}

    def register(
        self,
        name: str,
        required: list[str] | None = None,
        description: str = "",
        category: str = "general",
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator registering ``func`` under ``name``."""

        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            if name in self._actions:
                logger.debug(f"Replacing action '{name}'")
            self._actions[name] = ActionDefinition(
                name=name,
                func=func,
                required=list(required or []),
                description=description or (inspect.getdoc(func) or "").split("\n")[0],
                category=category,
            )
            return func

        return decorator

    def get(self, name: str) -> ActionDefinition | None:
        return self._actions.get(name)

    def names(self) -> list[str]:
        return sorted(self._actions)

    def unregister(self, name: str) -> bool:
        return self._actions.pop(name, None) is not None

    def clear(self) -> None:
        self._actions.clear()


# Process-wide registry used by the @action decorator
default_actions = ActionRegistry()
action = default_actions.register


class ActionTool(Tool):
    """Runs a registered action."""

    tool_type = "action"

    def __init__(
        self,
        name: str = "default",
        options: dict[str, Any] | None = None,
        actions: ActionRegistry | None = None,
    ):
        super().__init__(name, options)
        self.actions = actions or default_actions

    def _similar(self, name: str) -> list[str]:
        lowered = name.lower()
        return [n for n in self.actions.names() if lowered in n.lower() or n.lower() in lowered][:3]

    async def _on_validate(self, step: ActionStep, context: StepContext) -> ToolValidationResult:
        definition = self.actions.get(step.action)
        if definition is None:
            similar = self._similar(step.action)
            suggestions = [f"Similar actions available: {', '.join(similar)}"] if similar else []
            return ToolValidationResult.from_errors(
                [f"Action '{step.action}' not found in registry"], suggestions=suggestions
            )

        warnings = []
        missing = [p for p in definition.required if p not in step.parameters]
        missing_everywhere = [p for p in missing if p not in context.variables]
        if missing_everywhere:
            return ToolValidationResult.from_errors(
                [f"Missing required parameters: {', '.join(missing_everywhere)}"]
            )
        if missing:
            warnings.append(f"Parameters taken from variables: {', '.join(missing)}")
        return ToolValidationResult(warnings=warnings, estimated_time=0.5)

    async def _on_execute(self, step: ActionStep, context: StepContext, options: StepExecutionOptions) -> StepResult:
        start_time = now()
        definition = self.actions.get(step.action)
        if definition is None:
            raise ActionNotFoundError(f"Action '{step.action}' not found in registry")

        params = substitute_recursive(step.parameters, context.variables, strict=context.strict_variables)
        for required in definition.required:
            if required not in params:
                if required not in context.variables:
                    raise InvalidParameterError(f"Step '{step.name}': missing required parameter '{required}'")
                params[required] = context.variables[required]

        if context.dry_walk:
            logger.info(f"[dry-run] Step '{step.name}': would run action '{step.action}'")
            return self.completed(step, start_time, output={"action": step.action, "dry_run": True})

        logger.debug(f"Step '{step.name}': running action '{step.action}'")
        if inspect.iscoroutinefunction(definition.func):
            value = await definition.func(params, context)
        else:
            value = definition.func(params, context)

        if isinstance(value, ActionResult):
            context.variables.update(value.variables)
            return self.completed(
                step,
                start_time,
                tool_result=value,
                files_created=value.files_created,
                files_modified=value.files_modified,
                output={"action": step.action, **value.output},
            )
        output = {"action": step.action}
        if isinstance(value, dict):
            output.update(value)
        elif value is not None:
            output["result"] = value
        return self.completed(step, start_time, tool_result=value, output=output)
