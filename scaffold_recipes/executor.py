"""Step executor: dependency-ordered, bounded-concurrency step scheduling."""

import asyncio
import contextlib
import inspect
import logging
import time
from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Callable

from .context import FAILED
from .context import SKIPPED
from .context import StepContext
from .context import StepError
from .context import StepExecutionOptions
from .context import StepResult
from .context import make_result
from .context import now
from .errors import CONDITION_ERROR
from .errors import DEPENDENCY_FAILED
from .errors import ToolNotFoundError
from .expression_evaluator import ExpressionError
from .graph import dependency_waves
from .models import Step
from .tools.base import Tool
from .tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

StepResultCallback = Callable[[StepResult], Any]


@dataclass
class ExecutionSummary:
    """Outcome of executing a list of steps."""

    results: list[StepResult] = field(default_factory=list)
    duration: float = 0.0
    halted: bool = False
    failed_step: str | None = None  # First failure not tolerated by the step itself
    not_run: list[str] = field(default_factory=list)  # Steps never started because of a halt

    @property
    def completed(self) -> int:
        return sum(1 for r in self.results if r.status == "completed")

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.status == FAILED)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.status == SKIPPED)

    @property
    def succeeded(self) -> bool:
        return self.failed_step is None

    def result_for(self, step_name: str) -> StepResult | None:
        for result in self.results:
            if result.step_name == step_name:
                return result
        return None

    def files(self, kind: str = "created") -> list[str]:
        """Files created/modified/deleted across all results, first occurrence order."""
        attr = f"files_{kind}"
        seen: dict[str, None] = {}
        for result in self.results:
            for path in getattr(result, attr):
                seen.setdefault(path, None)
        return list(seen)


@dataclass
class _RunState:
    context: StepContext
    options: StepExecutionOptions
    semaphore: asyncio.Semaphore
    by_name: dict[str, Step]
    results: dict[str, StepResult] = field(default_factory=dict)
    halted: bool = False
    failed_step: str | None = None


class StepExecutor:
    """
    Schedules steps through the tool registry.

    Steps are partitioned into dependency waves. Within a wave, steps marked
    ``parallel`` run concurrently while unmarked steps run one after another
    in declaration order. Two semaphores bound concurrency: one per nesting
    level (``max_parallel``, or a parallel group's ``limit``) and one shared
    by the whole run, created from the top-level ``max_parallel``, that
    every executing leaf step holds. Composite steps (sequence, parallel,
    recipe) never hold a run slot, so their children cannot starve.

    Failure policy: a failed step halts every step not yet started, unless
    the step sets ``continue_on_error`` (the failure is recorded and its
    dependents run) or the run does (dependents of the failed step are
    skipped with ``DEPENDENCY_FAILED``). An explicit ``continue_on_error:
    false`` on a step always halts.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        options: StepExecutionOptions | None = None,
        on_step_result: StepResultCallback | None = None,
    ):
        self.registry = registry
        self.options = options or StepExecutionOptions()
        self.on_step_result = on_step_result

    async def run(
        self,
        steps: list[Step],
        context: StepContext,
        options: StepExecutionOptions | None = None,
    ) -> ExecutionSummary:
        """Execute a top-level step list and clean up every tool it used.

        Cleanup runs on every exit path, cancellation included.
        """
        try:
            return await self.execute_steps(steps, context, options)
        finally:
            await self.cleanup_tools(context)

    async def execute_steps(
        self,
        steps: list[Step],
        context: StepContext,
        options: StepExecutionOptions | None = None,
    ) -> ExecutionSummary:
        """
        Execute steps in dependency order without cleaning up tools.

        Nested execution (sequence, parallel and recipe steps) calls this
        directly; the enclosing ``run`` owns cleanup.

        Raises:
            CircularDependencyError: If depends_on forms a cycle
        """
        options = options or self.options
        if context.executor is None:
            context.executor = self
        if context.run_slots is None:
            context.run_slots = asyncio.Semaphore(max(1, options.max_parallel))
        waves = dependency_waves(steps)
        state = _RunState(
            context=context,
            options=options,
            semaphore=asyncio.Semaphore(max(1, options.max_parallel)),
            by_name={step.name: step for step in steps},
        )
        started = time.monotonic()

        for index, wave in enumerate(waves):
            if state.halted:
                break
            logger.debug(f"Wave {index + 1}/{len(waves)}: {', '.join(s.name for s in wave)}")
            sequential = [step for step in wave if not step.parallel]
            concurrent = [step for step in wave if step.parallel]
            await asyncio.gather(
                self._run_chain(sequential, state),
                *(self._run_step(step, state) for step in concurrent),
            )

        ordered = [state.results[step.name] for wave in waves for step in wave if step.name in state.results]
        return ExecutionSummary(
            results=ordered,
            duration=time.monotonic() - started,
            halted=state.halted,
            failed_step=state.failed_step,
            not_run=[step.name for step in steps if step.name not in state.results],
        )

    async def _run_chain(self, steps: list[Step], state: _RunState) -> None:
        for step in steps:
            if state.halted:
                return
            await self._run_step(step, state)

    async def _run_step(self, step: Step, state: _RunState) -> None:
        if state.halted:
            return
        result = await self._execute_one(step, state)
        await self._record(step, result, state)

    async def _record(self, step: Step, result: StepResult, state: _RunState) -> None:
        state.results[step.name] = result
        state.context.step_results[step.name] = result

        if result.status == FAILED:
            error = result.error.message if result.error else "unknown error"
            if step.continue_on_error is True:
                logger.warning(f"Step '{step.name}' failed (continuing): {error}")
            else:
                if state.failed_step is None:
                    state.failed_step = step.name
                if step.continue_on_error is None and state.options.continue_on_error:
                    logger.warning(f"Step '{step.name}' failed; dependents will be skipped: {error}")
                else:
                    logger.error(f"Step '{step.name}' failed; halting: {error}")
                    state.halted = True
        else:
            logger.info(f"Step '{step.name}' {result.status} in {result.duration:.2f}s")

        if self.on_step_result is not None:
            outcome = self.on_step_result(result)
            if inspect.isawaitable(outcome):
                await outcome

    def _failed_dependency(self, step: Step, state: _RunState) -> str | None:
        for dep in step.depends_on:
            dep_result = state.results.get(dep)
            if dep_result is None:
                continue
            dep_step = state.by_name.get(dep)
            if dep_result.status == FAILED and (dep_step is None or dep_step.continue_on_error is not True):
                return dep
            if dep_result.error is not None and dep_result.error.code == DEPENDENCY_FAILED:
                return dep
        return None

    async def _execute_one(self, step: Step, state: _RunState) -> StepResult:
        context = state.context
        start_time = now()

        failed_dep = self._failed_dependency(step, state)
        if failed_dep is not None:
            return make_result(
                step.name,
                step.tool,
                SKIPPED,
                start_time,
                error=StepError(
                    message=f"Step '{step.name}': dependency '{failed_dep}' failed",
                    code=DEPENDENCY_FAILED,
                    tool_type=step.tool,
                ),
            )

        condition_result = None
        if step.when is not None:
            try:
                condition_result = bool(context.evaluate_condition(step.when, context.condition_scope()))
            except ExpressionError as e:
                return make_result(
                    step.name,
                    step.tool,
                    FAILED,
                    start_time,
                    error=StepError(
                        message=f"Step '{step.name}': condition failed to evaluate: {e}",
                        code=CONDITION_ERROR,
                        tool_type=step.tool,
                    ),
                )
            if not condition_result:
                logger.info(f"Step '{step.name}' skipped: condition is false")
                return make_result(step.name, step.tool, SKIPPED, start_time, condition_result=False)

        try:
            tool = self.registry.resolve(step.tool)
        except ToolNotFoundError as e:
            return make_result(
                step.name,
                step.tool,
                FAILED,
                start_time,
                error=StepError(message=str(e), code=e.code, tool_type=step.tool),
            )
        if tool not in context.used_tools:
            context.used_tools.append(tool)

        try:
            run_slot = contextlib.nullcontext() if tool.composite else context.run_slots
            async with state.semaphore, run_slot:
                logger.debug(f"Executing step '{step.name}' with {tool!r}")
                result = await tool.execute(step, context, state.options)
        finally:
            self.registry.release(tool)

        if condition_result is not None:
            result = result.with_changes(condition_result=condition_result)
        return result

    async def cleanup_tools(self, context: StepContext) -> None:
        """Clean up every tool resolved under ``context``; failures are logged."""
        tools: list[Tool] = list(context.used_tools)
        context.used_tools.clear()
        for tool in tools:
            try:
                await tool.cleanup()
            except Exception as e:
                logger.warning(f"Cleanup of {tool!r} failed: {e}")
