"""Prompt tool: ask the operator for a value."""

import logging

from ..context import StepContext
from ..context import StepExecutionOptions
from ..context import StepResult
from ..context import now
from ..errors import InvalidParameterError
from ..models import PromptStep
from ..prompts import NonInteractivePrompter
from ..prompts import PromptRequest
from ..variables import substitute_string
from .base import Tool

logger = logging.getLogger(__name__)


class PromptTool(Tool):
    """Stores the answer in ``step.variable``.

    A value already present in the variables (from --var or a parent recipe)
    is kept without asking. Dry runs, --skip-prompts and non-interactive
    prompters use the step's default.
    """

    tool_type = "prompt"

    async def _on_execute(self, step: PromptStep, context: StepContext, options: StepExecutionOptions) -> StepResult:
        start_time = now()

        if context.variables.get(step.variable) is not None:
            value = context.variables[step.variable]
            return self.completed(step, start_time, output={"variable": step.variable, "value": value, "source": "provided"})

        request = PromptRequest(
            name=step.variable,
            message=substitute_string(step.message or f"Enter {step.variable}", context.variables, strict=False),
            prompt_type=step.prompt_type,
            options=list(step.options),
            default=step.default,
            validate_pattern=step.validate_pattern,
        )

        prompter = context.prompter
        if context.dry_walk or context.skip_prompts or prompter is None or not prompter.interactive:
            value = NonInteractivePrompter().ask(request)
            source = "default"
        else:
            # click prompts block; the run waits for the operator
            value = prompter.ask(request)
            source = "prompt"

        problem = request.check(value)
        if problem:
            raise InvalidParameterError(f"Step '{step.name}': {problem}")

        context.variables[step.variable] = value
        logger.debug(f"Step '{step.name}': {step.variable} set from {source}")
        return self.completed(step, start_time, output={"variable": step.variable, "value": value, "source": source})
