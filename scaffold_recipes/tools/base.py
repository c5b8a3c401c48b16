"""Tool lifecycle base shared by every step kind.

A tool is initialized lazily, validates steps without side effects, executes
with retry and exponential backoff, and releases registered resources on
cleanup. Subclasses implement ``_on_validate`` and ``_on_execute`` and may
override ``_on_initialize`` / ``_on_cleanup``.
"""

import asyncio
import datetime
import logging
import time
from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Callable

from ..context import COMPLETED
from ..context import FAILED
from ..context import StepContext
from ..context import StepError
from ..context import StepExecutionOptions
from ..context import StepResult
from ..context import make_result
from ..context import now
from ..errors import TOOL_BUSY
from ..errors import VALIDATION_ERROR
from ..errors import RecipeError
from ..errors import StepTimeoutError
from ..errors import error_code
from ..errors import is_retryable
from ..models import Step

logger = logging.getLogger(__name__)


@dataclass
class ToolValidationResult:
    """Outcome of validating a step against a tool."""

    is_valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    estimated_time: float | None = None  # Seconds
    resource_requirements: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_errors(cls, errors: list[str], **kwargs: Any) -> "ToolValidationResult":
        return cls(is_valid=not errors, errors=list(errors), **kwargs)


@dataclass
class ToolResource:
    """A resource acquired by a tool, released by ``cleanup``."""

    id: str
    type: str
    cleanup: Callable[[], Any]
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolMetrics:
    """Lifecycle counters for one tool instance."""

    executions: int = 0
    failures: int = 0
    retries: int = 0
    total_duration: float = 0.0
    last_duration: float | None = None
    last_executed: datetime.datetime | None = None


class Tool:
    """Base class for step tools."""

    tool_type = ""
    composite = False  # Runs nested steps through the executor instead of doing work itself

    def __init__(self, name: str = "default", options: dict[str, Any] | None = None):
        self.name = name
        self.options = dict(options or {})
        self.metrics = ToolMetrics()
        self.resources: dict[str, ToolResource] = {}
        self._initialized = False
        self._executing = False

    def __repr__(self) -> str:
        return f"{type(self).__name__}(type={self.tool_type!r}, name={self.name!r})"

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def is_executing(self) -> bool:
        return self._executing

    async def initialize(self) -> None:
        """One-time setup. Safe to call repeatedly."""
        if self._initialized:
            return
        logger.debug(f"Initializing {self!r}")
        await self._on_initialize()
        self._initialized = True

    async def validate(self, step: Step, context: StepContext) -> ToolValidationResult:
        """Check a step without side effects."""
        structural = step.validate()
        if structural:
            return ToolValidationResult.from_errors(structural)
        return await self._on_validate(step, context)

    async def execute(
        self,
        step: Step,
        context: StepContext,
        options: StepExecutionOptions | None = None,
    ) -> StepResult:
        """
        Execute a step with retry.

        Attempts = 1 + max(options.retries, step.retries, 0). Errors that
        retrying cannot fix (configuration, syntax, parameters) fail at once.

        Args:
            step: Step to execute
            context: Execution context
            options: Run-level options

        Returns:
            StepResult; failures are reported in the result, not raised
        """
        options = options or StepExecutionOptions()
        start_time = now()

        if self._executing:
            return make_result(
                step.name,
                self.tool_type,
                FAILED,
                start_time,
                error=StepError(
                    message=f"Step '{step.name}': {self!r} is already executing",
                    code=TOOL_BUSY,
                    tool_type=self.tool_type,
                ),
            )

        self._executing = True
        try:
            await self.initialize()

            validation = await self.validate(step, context)
            if not validation.is_valid:
                self.metrics.failures += 1
                return make_result(
                    step.name,
                    self.tool_type,
                    FAILED,
                    start_time,
                    error=StepError(
                        message=f"Step '{step.name}': " + "; ".join(validation.errors),
                        code=VALIDATION_ERROR,
                        tool_type=self.tool_type,
                    ),
                )
            for warning in validation.warnings:
                logger.warning(f"Step '{step.name}': {warning}")

            return await self._execute_with_retry(step, context, options, start_time)
        finally:
            self._executing = False

    async def _execute_with_retry(
        self,
        step: Step,
        context: StepContext,
        options: StepExecutionOptions,
        start_time: datetime.datetime,
    ) -> StepResult:
        max_retries = max(options.retries or 0, step.retries or 0, 0)
        timeout = step.timeout or options.timeout
        last_error: BaseException | None = None
        attempt = 0

        while True:
            attempt_started = time.monotonic()
            try:
                if timeout:
                    try:
                        result = await asyncio.wait_for(self._on_execute(step, context, options), timeout=timeout)
                    except asyncio.TimeoutError:
                        raise StepTimeoutError(f"Step '{step.name}': timed out after {timeout}s") from None
                else:
                    result = await self._on_execute(step, context, options)
            except RecipeError as e:
                last_error = e
            except Exception as e:
                logger.debug(f"Step '{step.name}' raised {type(e).__name__}", exc_info=True)
                last_error = e
            else:
                self._record(time.monotonic() - attempt_started, failed=result.status == FAILED)
                return result.with_changes(start_time=start_time, retry_count=attempt)

            self._record(time.monotonic() - attempt_started, failed=True)

            if attempt >= max_retries or not is_retryable(last_error):
                break

            attempt += 1
            self.metrics.retries += 1
            delay = min(options.retry_base_delay * 2 ** (attempt - 1), options.retry_max_delay)
            logger.info(f"Step '{step.name}' failed ({last_error}); retry {attempt}/{max_retries} in {delay:.1f}s")
            await asyncio.sleep(delay)

        message = str(last_error) or type(last_error).__name__
        return make_result(
            step.name,
            self.tool_type,
            FAILED,
            start_time,
            retry_count=attempt,
            error=StepError(message=message, code=error_code(last_error), tool_type=self.tool_type),
        )

    def _record(self, duration: float, failed: bool) -> None:
        self.metrics.executions += 1
        self.metrics.total_duration += duration
        self.metrics.last_duration = duration
        self.metrics.last_executed = now()
        if failed:
            self.metrics.failures += 1

    def register_resource(self, resource: ToolResource) -> None:
        """Track a resource so cleanup releases it."""
        if resource.id in self.resources:
            logger.debug(f"{self!r}: replacing resource '{resource.id}'")
        self.resources[resource.id] = resource

    async def cleanup(self) -> None:
        """Release all registered resources.

        Individual failures are logged and collected; the remaining resources
        are still released. The tool can be initialized again afterwards.
        """
        if not self._initialized and not self.resources:
            return

        failures: list[str] = []
        for resource_id, resource in list(self.resources.items()):
            try:
                outcome = resource.cleanup()
                if asyncio.iscoroutine(outcome):
                    await outcome
            except Exception as e:
                failures.append(f"{resource_id}: {e}")
                logger.warning(f"{self!r}: failed to clean up resource '{resource_id}': {e}")
        self.resources.clear()

        try:
            await self._on_cleanup()
        except Exception as e:
            failures.append(f"on_cleanup: {e}")
            logger.warning(f"{self!r}: cleanup hook failed: {e}")

        self._initialized = False
        if failures:
            logger.warning(f"{self!r}: cleanup finished with {len(failures)} failure(s)")

    async def _on_initialize(self) -> None:
        pass

    async def _on_cleanup(self) -> None:
        pass

    async def _on_validate(self, step: Step, context: StepContext) -> ToolValidationResult:
        return ToolValidationResult()

    async def _on_execute(self, step: Step, context: StepContext, options: StepExecutionOptions) -> StepResult:
        raise NotImplementedError

    def completed(self, step: Step, start_time: datetime.datetime, **kwargs: Any) -> StepResult:
        """Build a completed result for this tool."""
        return make_result(step.name, self.tool_type, COMPLETED, start_time, **kwargs)
