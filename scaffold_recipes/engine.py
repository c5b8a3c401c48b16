"""Recipe engine: load, validate, resolve variables, execute, report."""

import logging
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from typing import Any

from .ai import AiCollector
from .config import EngineConfig
from .context import FAILED
from .context import StepContext
from .context import StepResult
from .errors import RecipeValidationError
from .executor import ExecutionSummary
from .executor import StepExecutor
from .executor import StepResultCallback
from .models import Recipe
from .prompts import NonInteractivePrompter
from .prompts import Prompter
from .resolution import RecipeResolution
from .resolution import RecipeResolver
from .tools import register_default_tools
from .tools.registry import ToolRegistry
from .validator import ValidationResult
from .validator import validate_recipe
from .variables import VariableResolver

logger = logging.getLogger(__name__)

COMPLETED = "completed"
FAILED_STATUS = "failed"
AWAITING_ANSWERS = "awaiting_answers"


@dataclass
class ExecutionReport:
    """Outcome of one recipe run."""

    recipe: str
    status: str  # completed | failed | awaiting_answers
    summary: ExecutionSummary
    variables: dict[str, Any] = field(default_factory=dict)
    manifest: dict[str, Any] | None = None
    warnings: list[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status != FAILED_STATUS

    @property
    def results(self) -> list[StepResult]:
        return self.summary.results

    @property
    def files_created(self) -> list[str]:
        return self.summary.files("created")

    @property
    def files_modified(self) -> list[str]:
        return self.summary.files("modified")

    @property
    def failed_result(self) -> StepResult | None:
        if self.summary.failed_step is None:
            return None
        return self.summary.result_for(self.summary.failed_step)

    def to_dict(self) -> dict[str, Any]:
        return {
            "recipe": self.recipe,
            "status": self.status,
            "dry_run": self.dry_run,
            "duration": round(self.summary.duration, 3),
            "completed": self.summary.completed,
            "failed": self.summary.failed,
            "skipped": self.summary.skipped,
            "not_run": list(self.summary.not_run),
            "files_created": self.files_created,
            "files_modified": self.files_modified,
            "steps": [result.to_dict() for result in self.results],
            "warnings": list(self.warnings),
        }


def render_report(report: ExecutionReport) -> list[str]:
    """Human-readable report lines for the CLI."""
    lines = []
    prefix = "[dry-run] " if report.dry_run else ""
    summary = report.summary
    lines.append(
        f"{prefix}Recipe '{report.recipe}' {report.status}: "
        f"{summary.completed} completed, {summary.failed} failed, {summary.skipped} skipped "
        f"in {summary.duration:.2f}s"
    )
    for path in report.files_created:
        lines.append(f"  + {path}")
    for path in report.files_modified:
        lines.append(f"  ~ {path}")

    failed = report.failed_result
    if failed is not None and failed.error is not None:
        lines.append(f"Step '{failed.step_name}' ({failed.tool_type}) failed [{failed.error.code}]:")
        lines.extend(f"  {line}" for line in failed.error.message.splitlines())
    for result in summary.results:
        if result.status == FAILED and result is not failed and result.error is not None:
            lines.append(f"Step '{result.step_name}' ({result.tool_type}) also failed: {result.error.message}")
    if summary.not_run:
        lines.append(f"Not run: {', '.join(summary.not_run)}")
    return lines


class RecipeEngine:
    """
    Runs recipes end to end.

    Owns a tool registry (default tools registered unless one is supplied),
    a recipe resolver and a prompter. One engine may run many recipes,
    concurrently included; each top-level run gets its own context and its
    own resolver cache. The first run starts periodic registry eviction on
    the running loop; ``close`` stops it.
    """

    def __init__(
        self,
        registry: ToolRegistry | None = None,
        config: EngineConfig | None = None,
        resolver: RecipeResolver | None = None,
        prompter: Prompter | None = None,
        on_step_result: StepResultCallback | None = None,
    ):
        self.config = config or EngineConfig()
        if registry is None:
            registry = register_default_tools(
                ToolRegistry(
                    ttl=self.config.registry_ttl,
                    cleanup_interval=self.config.registry_cleanup_interval,
                    max_cache_size=self.config.registry_max_cache_size,
                )
            )
        self.registry = registry
        self.resolver = resolver or RecipeResolver(
            packages_dirs=self.config.packages_dirs,
            cache_ttl=self.config.recipe_cache_ttl,
            http_timeout=self.config.http_timeout,
        )
        self.prompter = prompter or NonInteractivePrompter()
        self.on_step_result = on_step_result

    async def load(self, identifier: str | Path, project_root: Path | None = None) -> RecipeResolution:
        """Resolve a recipe identifier (path, URL, package or GitHub reference)."""
        project_root = Path(project_root or Path.cwd()).resolve()
        return await self.resolver.resolve(str(identifier), project_root)

    def validate(self, recipe: Recipe) -> ValidationResult:
        return validate_recipe(recipe, self.registry)

    async def execute(
        self,
        recipe: Recipe | str | Path,
        variables: dict[str, Any] | None = None,
        project_root: Path | None = None,
        dry_run: bool = False,
        force: bool = False,
        skip_prompts: bool = False,
        continue_on_error: bool = False,
        answers: dict[str, str] | None = None,
        collect: bool = False,
    ) -> ExecutionReport:
        """
        Execute a recipe.

        With ``collect`` set, AI steps record prompts instead of producing
        output and writing tools only dry-walk; the report status is
        ``awaiting_answers`` and carries the manifest. A collect pass that
        finds no AI prompts falls through to a normal run.

        Args:
            recipe: Recipe object or identifier
            variables: Caller-provided variable values (highest precedence)
            project_root: Root for relative paths (default: current directory)
            dry_run: Report what would happen without writing
            force: Let templates overwrite changed files
            skip_prompts: Never prompt; missing required variables fail
            continue_on_error: Record failures and keep running independent steps
            answers: AI answers (key -> text) for the apply pass
            collect: Run the AI collect pass

        Returns:
            ExecutionReport

        Raises:
            RecipeValidationError: If the recipe is invalid
            VariableResolutionError: If variables are missing or violate constraints
            RecipeNotFoundError: If the recipe identifier cannot be resolved
        """
        project_root = Path(project_root or Path.cwd()).resolve()
        if not self.registry.eviction_running:
            self.registry.start_eviction()
        resolver = self.resolver.for_run()
        try:
            if isinstance(recipe, Recipe):
                location = str(recipe.source_path) if recipe.source_path else f"<recipe:{recipe.name}>"
            else:
                resolution = await resolver.resolve(str(recipe), project_root)
                recipe, location = resolution.recipe, resolution.key

            validation = self.validate(recipe)
            if not validation.is_valid:
                raise RecipeValidationError(validation.errors, validation.warnings, recipe=recipe.name)
            for warning in validation.warnings:
                logger.warning(f"Recipe '{recipe.name}': {warning}")

            resolved = VariableResolver(self.prompter).resolve(recipe.variables, variables, skip_prompts=skip_prompts)

            report = await self._run(
                recipe,
                location,
                resolved,
                resolver,
                project_root,
                dry_run=dry_run,
                force=force,
                skip_prompts=skip_prompts,
                continue_on_error=continue_on_error,
                answers=answers,
                collect=collect,
            )
            if collect and report.status == AWAITING_ANSWERS and not report.manifest["entries"]:
                logger.info(f"Recipe '{recipe.name}' has no AI prompts to collect; running normally")
                report = await self._run(
                    recipe,
                    location,
                    resolved,
                    resolver,
                    project_root,
                    dry_run=dry_run,
                    force=force,
                    skip_prompts=skip_prompts,
                    continue_on_error=continue_on_error,
                    answers=answers or {},
                    collect=False,
                )
            report.warnings = list(validation.warnings)
            return report
        finally:
            await self.registry.cleanup_evicted()

    async def _run(
        self,
        recipe: Recipe,
        location: str,
        variables: dict[str, Any],
        resolver: RecipeResolver,
        project_root: Path,
        dry_run: bool,
        force: bool,
        skip_prompts: bool,
        continue_on_error: bool,
        answers: dict[str, str] | None,
        collect: bool,
    ) -> ExecutionReport:
        if recipe.settings.working_dir:
            project_root = (project_root / recipe.settings.working_dir).resolve()
            if not (dry_run or collect):
                project_root.mkdir(parents=True, exist_ok=True)

        collector = AiCollector() if collect else None
        options = self.config.execution_options(continue_on_error).with_settings(recipe.settings)
        executor = StepExecutor(self.registry, options, on_step_result=self.on_step_result)
        context = StepContext(
            project_root=project_root,
            variables=dict(variables),
            recipe_name=recipe.name,
            recipe_path=recipe.source_path,
            dry_run=dry_run,
            force=force,
            skip_prompts=skip_prompts,
            collect_mode=collect,
            answers=answers,
            collector=collector,
            prompter=self.prompter,
            call_stack=[(location, recipe.name)],
            resolver=resolver,
            executor=executor,
            max_depth=min(self.config.max_depth, recipe.settings.max_depth),
        )

        mode = "collect" if collect else ("dry-run" if dry_run else "apply")
        logger.info(f"Running recipe '{recipe.name}' ({len(recipe.steps)} steps, {mode})")
        summary = await executor.run(recipe.steps, context, options)

        if not summary.succeeded:
            status = FAILED_STATUS
        elif collect:
            status = AWAITING_ANSWERS
        else:
            status = COMPLETED

        return ExecutionReport(
            recipe=recipe.name,
            status=status,
            summary=summary,
            variables=context.variables,
            manifest=collector.manifest(recipe.name) if collector is not None else None,
            dry_run=dry_run or collect,
        )

    async def close(self) -> None:
        """Stop registry eviction and clean up cached tool instances."""
        await self.registry.stop_eviction()
        await self.registry.cleanup_evicted()
        for tool in self.registry.cached_instances():
            await tool.cleanup()
