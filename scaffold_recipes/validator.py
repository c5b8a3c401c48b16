"""Recipe validation.

Collects every problem in one pass so a recipe author can fix them together.
Structural checks come from the models; this module adds dependency cycle
detection and, when a registry is supplied, checks that each step's tool is
registered and enabled.
"""

from dataclasses import dataclass
from dataclasses import field
from typing import TYPE_CHECKING

from .graph import find_cycle
from .models import AiStep
from .models import Recipe
from .models import Step
from .models import UnparsedStep

if TYPE_CHECKING:
    from .tools.registry import ToolRegistry


@dataclass
class ValidationResult:
    """Outcome of validating a recipe."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def _check_cycles(steps: list[Step], errors: list[str]) -> None:
    cycle = find_cycle(steps)
    if cycle:
        errors.append(f"Circular step dependency detected: {' -> '.join(cycle)}")
    for step in steps:
        children = step.children()
        if children:
            _check_cycles(children, errors)


def validate_recipe(recipe: Recipe, registry: "ToolRegistry | None" = None) -> ValidationResult:
    """Validate a recipe.

    Args:
        recipe: Recipe to validate
        registry: Optional tool registry; when given, each step's tool must be registered

    Returns:
        ValidationResult with all errors and warnings
    """
    result = ValidationResult()
    result.errors.extend(recipe.validate())
    _check_cycles(recipe.steps, result.errors)

    all_steps = recipe.iter_steps()

    if registry is not None:
        for step in all_steps:
            if isinstance(step, UnparsedStep):
                continue
            if not registry.is_registered(step.tool):
                result.errors.append(f"Step '{step.name}': no tool registered for '{step.tool}'")
            elif not registry.is_enabled(step.tool):
                result.errors.append(f"Step '{step.name}': tool '{step.tool}' is disabled")

    ai_keys = [step.answer_key for step in all_steps if isinstance(step, AiStep)]
    duplicate_keys = sorted({key for key in ai_keys if ai_keys.count(key) > 1})
    if duplicate_keys:
        result.errors.append(f"Duplicate AI answer keys: {', '.join(duplicate_keys)}")

    # Warnings: suspicious but executable
    if not recipe.description:
        result.warnings.append("Recipe has no description")
    for spec in recipe.variables.values():
        if spec.required and spec.default is not None:
            result.warnings.append(f"Variable '{spec.name}': required variable has a default and will never prompt")
    for step in all_steps:
        if step.tool == "codemod" and getattr(step, "backup", True) is False and step.retries:
            result.warnings.append(f"Step '{step.name}': retried codemods without backups may apply twice")

    return result
