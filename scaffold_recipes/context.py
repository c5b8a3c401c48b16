"""Execution context and step results."""

import asyncio
import datetime
from dataclasses import dataclass
from dataclasses import field
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING
from typing import Any
from typing import Callable

from .expression_evaluator import evaluate_condition

if TYPE_CHECKING:
    from .ai import AiCollector
    from .executor import StepExecutor
    from .models import RecipeSettings
    from .prompts import Prompter
    from .resolution import RecipeResolver
    from .tools.base import Tool

COMPLETED = "completed"
FAILED = "failed"
SKIPPED = "skipped"


@dataclass(frozen=True)
class StepError:
    """Why a step failed."""

    message: str
    code: str
    tool_type: str | None = None


@dataclass(frozen=True)
class StepResult:
    """Immutable outcome of one step."""

    step_name: str
    tool_type: str
    status: str
    start_time: datetime.datetime
    end_time: datetime.datetime
    retry_count: int = 0
    error: StepError | None = None
    files_created: tuple[str, ...] = ()
    files_modified: tuple[str, ...] = ()
    files_deleted: tuple[str, ...] = ()
    tool_result: Any = None
    output: dict[str, Any] | None = None
    condition_result: bool | None = None

    @property
    def duration(self) -> float:
        """Seconds between start and end."""
        return (self.end_time - self.start_time).total_seconds()

    @property
    def succeeded(self) -> bool:
        return self.status != FAILED

    def with_changes(self, **changes: Any) -> "StepResult":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Summary suitable for JSON reports and conditions."""
        data: dict[str, Any] = {
            "name": self.step_name,
            "tool": self.tool_type,
            "status": self.status,
            "duration": round(self.duration, 3),
            "retry_count": self.retry_count,
            "files_created": list(self.files_created),
            "files_modified": list(self.files_modified),
            "files_deleted": list(self.files_deleted),
            "output": self.output or {},
        }
        if self.error:
            data["error"] = {"message": self.error.message, "code": self.error.code}
        if self.condition_result is not None:
            data["condition_result"] = self.condition_result
        return data


def now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def make_result(
    step_name: str,
    tool_type: str,
    status: str,
    start_time: datetime.datetime,
    **kwargs: Any,
) -> StepResult:
    """Build a StepResult ending now. File lists may be any iterable."""
    for key in ("files_created", "files_modified", "files_deleted"):
        if key in kwargs:
            kwargs[key] = tuple(kwargs[key] or ())
    return StepResult(
        step_name=step_name,
        tool_type=tool_type,
        status=status,
        start_time=start_time,
        end_time=kwargs.pop("end_time", None) or now(),
        **kwargs,
    )


@dataclass
class StepExecutionOptions:
    """Run-level execution options passed down to tools."""

    retries: int = 0
    timeout: float | None = None  # Seconds, fallback when the step has none
    continue_on_error: bool = False
    max_parallel: int = 4
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0

    def with_settings(self, settings: "RecipeSettings") -> "StepExecutionOptions":
        """Combine run options with a recipe's settings.

        The larger retry count wins, an explicit run timeout beats the
        recipe's, and either side may opt into continue-on-error.
        """
        return replace(
            self,
            retries=max(self.retries, settings.retries or 0),
            timeout=self.timeout or settings.timeout,
            continue_on_error=self.continue_on_error or settings.continue_on_error,
            max_parallel=min(self.max_parallel, settings.max_parallel or self.max_parallel),
        )


def _default_condition(expression: str | bool, scope: dict[str, Any]) -> bool:
    return evaluate_condition(expression, scope)


@dataclass
class StepContext:
    """State owned by a single recipe execution.

    ``variables`` is mutated in place by steps (prompts, shell output, AI
    answers) and is visible to every later step of the same recipe.
    """

    project_root: Path
    variables: dict[str, Any] = field(default_factory=dict)
    step_results: dict[str, StepResult] = field(default_factory=dict)
    recipe_name: str = ""
    recipe_path: Path | None = None
    dry_run: bool = False
    force: bool = False
    skip_prompts: bool = False
    collect_mode: bool = False
    answers: dict[str, str] | None = None
    collector: "AiCollector | None" = None
    prompter: "Prompter | None" = None
    call_stack: list[tuple[str, str]] = field(default_factory=list)  # (resolution key, recipe name)
    resolver: "RecipeResolver | None" = None
    executor: "StepExecutor | None" = None
    evaluate_condition: Callable[[str | bool, dict[str, Any]], bool] = _default_condition
    max_depth: int = 10
    used_tools: list["Tool"] = field(default_factory=list)  # Shared with child contexts; cleaned up by the run
    run_slots: asyncio.Semaphore | None = None  # Run-wide bound on executing leaf steps, shared with child contexts

    @property
    def recipe_dir(self) -> Path:
        """Directory relative recipe assets (templates, sub-recipes) resolve against."""
        if self.recipe_path is not None:
            return self.recipe_path.parent
        return self.project_root

    @property
    def dry_walk(self) -> bool:
        """True when tools must not write (dry run, or AI collect pass)."""
        return self.dry_run or self.collect_mode

    @property
    def strict_variables(self) -> bool:
        """Undefined references fail, except in a collect pass where AI answers do not exist yet."""
        return not self.collect_mode

    def condition_scope(self) -> dict[str, Any]:
        """Names visible to ``when`` conditions."""
        scope = dict(self.variables)
        scope["steps"] = {name: result.to_dict() for name, result in self.step_results.items()}
        scope["recipe"] = {"name": self.recipe_name}
        return scope

    def resolve_path(self, path: str | Path) -> Path:
        """Resolve a path relative to the project root."""
        candidate = Path(path).expanduser()
        if candidate.is_absolute():
            return candidate
        return self.project_root / candidate

    def relative(self, path: Path) -> str:
        """Path as reported in results: relative to the project root when inside it."""
        try:
            return str(path.resolve().relative_to(self.project_root.resolve()))
        except ValueError:
            return str(path)

    def child(self, **changes: Any) -> "StepContext":
        """Derive a context for a sub-recipe with a fresh step-results map."""
        changes.setdefault("step_results", {})
        return replace(self, **changes)
