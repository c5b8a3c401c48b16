"""Recipe tool: run another recipe as a step (composition)."""

import logging
from pathlib import Path
from typing import Any

from ..context import StepContext
from ..context import StepExecutionOptions
from ..context import StepResult
from ..context import now
from ..errors import SUB_RECIPE_FAILED
from ..errors import CircularDependencyError
from ..errors import ConfigurationError
from ..errors import RecipeValidationError
from ..models import RecipeStep
from ..validator import validate_recipe
from ..variables import VariableResolver
from ..variables import lookup_path
from ..variables import substitute_recursive
from ..variables import substitute_string
from .base import Tool
from .base import ToolValidationResult
from .sequence import raise_for_summary
from .sequence import summary_output

logger = logging.getLogger(__name__)

_MISSING = object()


class RecipeTool(Tool):
    """Resolves, validates and executes a sub-recipe through the running executor.

    The sub-recipe gets its own variables (inherited, mapped, then
    overridden, then resolved against its declarations) and a fresh step
    result map. Re-entering a recipe already on the call stack fails with the
    full chain; ``max_depth`` bounds nesting.
    """

    tool_type = "recipe"
    composite = True

    async def _on_validate(self, step: RecipeStep, context: StepContext) -> ToolValidationResult:
        errors = []
        if context.resolver is None:
            errors.append("no recipe resolver configured")
        if context.executor is None:
            errors.append("no executor available for sub-recipe steps")
        return ToolValidationResult.from_errors(errors, estimated_time=1.0)

    def _sub_variables(self, step: RecipeStep, context: StepContext) -> dict[str, Any]:
        provided: dict[str, Any] = dict(context.variables) if step.inherit_variables else {}
        for parent_name, child_name in step.variable_mapping.items():
            value = lookup_path(context.variables, parent_name, _MISSING)
            if value is not _MISSING:
                provided[child_name] = value
        overrides = substitute_recursive(step.variables, context.variables, strict=context.strict_variables)
        provided.update(overrides)
        return provided

    async def _on_execute(self, step: RecipeStep, context: StepContext, options: StepExecutionOptions) -> StepResult:
        start_time = now()
        if context.resolver is None or context.executor is None:
            raise ConfigurationError(f"Step '{step.name}': recipe composition needs a resolver and an executor")

        if len(context.call_stack) >= context.max_depth:
            chain = " -> ".join(name for _, name in context.call_stack)
            raise ConfigurationError(
                f"Step '{step.name}': maximum recipe nesting depth {context.max_depth} exceeded ({chain})"
            )

        identifier = substitute_string(step.recipe, context.variables, strict=context.strict_variables)
        resolution = await context.resolver.resolve(identifier, context.project_root, context.recipe_dir)
        sub_recipe = resolution.recipe

        stack_keys = [key for key, _ in context.call_stack]
        if resolution.key in stack_keys:
            names = [name for _, name in context.call_stack[stack_keys.index(resolution.key) :]]
            raise CircularDependencyError([*names, sub_recipe.name], kind="recipe")

        validation = validate_recipe(sub_recipe, context.executor.registry)
        if not validation.is_valid:
            raise RecipeValidationError(validation.errors, validation.warnings, recipe=sub_recipe.name)

        variables = VariableResolver(context.prompter).resolve(
            sub_recipe.variables,
            self._sub_variables(step, context),
            skip_prompts=context.skip_prompts,
        )

        project_root = context.project_root
        working_dir = step.working_dir or sub_recipe.settings.working_dir
        if working_dir:
            working_dir = substitute_string(working_dir, context.variables, strict=context.strict_variables)
            project_root = context.resolve_path(working_dir)
            if not context.dry_walk:
                project_root.mkdir(parents=True, exist_ok=True)

        child = context.child(
            variables=variables,
            recipe_name=sub_recipe.name,
            recipe_path=Path(resolution.location) if resolution.source != "url" else None,
            project_root=project_root,
            call_stack=[*context.call_stack, (resolution.key, sub_recipe.name)],
        )

        logger.info(f"Step '{step.name}': running sub-recipe '{sub_recipe.name}' ({resolution.source})")
        summary = await context.executor.execute_steps(sub_recipe.steps, child, options.with_settings(sub_recipe.settings))
        raise_for_summary(step.name, summary, code=SUB_RECIPE_FAILED)

        # Report sub-recipe files relative to the composing project root
        def rebase(paths: list[str]) -> list[str]:
            if project_root == context.project_root:
                return paths
            return [context.relative(project_root / p) for p in paths]

        output = summary_output(summary)
        output.update({"recipe": sub_recipe.name, "source": resolution.source, "location": resolution.location})
        return self.completed(
            step,
            start_time,
            tool_result=summary,
            files_created=rebase(summary.files("created")),
            files_modified=rebase(summary.files("modified")),
            files_deleted=rebase(summary.files("deleted")),
            output=output,
        )
