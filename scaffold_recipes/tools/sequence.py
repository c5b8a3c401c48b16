"""Sequence and parallel group tools.

Both run their nested steps through the executor that is running the
enclosing recipe, so nested results land in the same step-result map and
nested tools are cleaned up with the rest of the run.
"""

import logging
from dataclasses import replace
from typing import TYPE_CHECKING

from ..context import StepContext
from ..context import StepExecutionOptions
from ..context import StepResult
from ..context import now
from ..errors import NON_RETRYABLE_CODES
from ..errors import ConfigurationError
from ..errors import RecipeError
from ..models import ParallelStep
from ..models import SequenceStep
from .base import Tool

if TYPE_CHECKING:
    from ..executor import ExecutionSummary

logger = logging.getLogger(__name__)


def summary_output(summary: "ExecutionSummary") -> dict:
    return {
        "steps": [result.to_dict() for result in summary.results],
        "completed": summary.completed,
        "failed": summary.failed,
        "skipped": summary.skipped,
        "not_run": list(summary.not_run),
    }


def raise_for_summary(step_name: str, summary: "ExecutionSummary", code: str | None = None) -> None:
    """Raise when a nested run had a failure the failing step did not tolerate.

    ``code`` replaces the nested error's code unless that code is one that is
    never retried, so a deterministic nested failure is not retried as a whole.
    """
    if summary.failed_step is None:
        return
    failed = summary.result_for(summary.failed_step)
    detail = failed.error.message if failed and failed.error else "failed"
    child_code = failed.error.code if failed and failed.error else None
    raise RecipeError(
        f"Step '{step_name}': nested step '{summary.failed_step}' failed: {detail}",
        code=child_code if child_code in NON_RETRYABLE_CODES else (code or child_code),
        failed_step=summary.failed_step,
    )


class SequenceTool(Tool):
    """Runs nested steps in declaration order (depends_on still applies)."""

    tool_type = "sequence"
    composite = True

    def _options(self, step: SequenceStep, options: StepExecutionOptions) -> StepExecutionOptions:
        return options

    def _steps(self, step: SequenceStep) -> list:
        return list(step.steps)

    async def _on_execute(self, step: SequenceStep, context: StepContext, options: StepExecutionOptions) -> StepResult:
        start_time = now()
        if context.executor is None:
            raise ConfigurationError(f"Step '{step.name}': no executor available for nested steps")

        summary = await context.executor.execute_steps(self._steps(step), context, self._options(step, options))
        raise_for_summary(step.name, summary)

        return self.completed(
            step,
            start_time,
            tool_result=summary,
            files_created=summary.files("created"),
            files_modified=summary.files("modified"),
            files_deleted=summary.files("deleted"),
            output=summary_output(summary),
        )


class ParallelTool(SequenceTool):
    """Runs nested steps concurrently, at most ``limit`` at a time."""

    tool_type = "parallel"

    def _options(self, step: ParallelStep, options: StepExecutionOptions) -> StepExecutionOptions:
        return replace(options, max_parallel=step.limit or options.max_parallel)

    def _steps(self, step: ParallelStep) -> list:
        return [child if child.parallel else replace(child, parallel=True) for child in step.steps]
