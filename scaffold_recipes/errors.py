"""Error types raised by the recipe step system.

Every error carries a stable ``code`` so results and reports can be matched
without parsing messages. Codes listed in ``NON_RETRYABLE_CODES`` describe
deterministic configuration problems and are never retried.
"""

from typing import Any

CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
INVALID_SYNTAX = "INVALID_SYNTAX"
INVALID_PARAMETER = "INVALID_PARAMETER"
VALIDATION_ERROR = "VALIDATION_ERROR"
CIRCULAR_DEPENDENCY = "CIRCULAR_DEPENDENCY"
RECIPE_NOT_FOUND = "RECIPE_NOT_FOUND"
TEMPLATE_NOT_FOUND = "TEMPLATE_NOT_FOUND"
ACTION_NOT_FOUND = "ACTION_NOT_FOUND"
TOOL_NOT_FOUND = "TOOL_NOT_FOUND"
TOOL_BUSY = "TOOL_BUSY"
EXECUTION_ERROR = "EXECUTION_ERROR"
STEP_TIMEOUT = "STEP_TIMEOUT"
MISSING_ANSWER = "MISSING_ANSWER"
CONDITION_ERROR = "CONDITION_ERROR"
VARIABLE_ERROR = "VARIABLE_ERROR"
SUB_RECIPE_FAILED = "SUB_RECIPE_FAILED"
DEPENDENCY_FAILED = "DEPENDENCY_FAILED"

NON_RETRYABLE_CODES = frozenset(
    {
        CONFIGURATION_ERROR,
        INVALID_SYNTAX,
        INVALID_PARAMETER,
        VALIDATION_ERROR,
        CIRCULAR_DEPENDENCY,
        MISSING_ANSWER,
        CONDITION_ERROR,
        VARIABLE_ERROR,
        TOOL_BUSY,
    }
)


class RecipeError(Exception):
    """Base class for recipe system errors."""

    code = EXECUTION_ERROR

    def __init__(self, message: str, code: str | None = None, **details: Any):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details

    @property
    def retryable(self) -> bool:
        return self.code not in NON_RETRYABLE_CODES


class ConfigurationError(RecipeError):
    """Malformed configuration (recipe settings, config file, step shape)."""

    code = CONFIGURATION_ERROR


class InvalidSyntaxError(RecipeError):
    """A document or expression could not be parsed."""

    code = INVALID_SYNTAX


class InvalidParameterError(RecipeError):
    """A parameter value is outside what the tool accepts."""

    code = INVALID_PARAMETER


class RecipeValidationError(RecipeError):
    """Raised when a recipe fails validation. Carries every problem found."""

    code = VALIDATION_ERROR

    def __init__(self, errors: list[str], warnings: list[str] | None = None, recipe: str | None = None):
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        self.recipe = recipe
        label = f"Recipe '{recipe}'" if recipe else "Recipe"
        message = f"{label} failed validation with {len(self.errors)} error(s):\n" + "\n".join(
            f"  - {err}" for err in self.errors
        )
        super().__init__(message)


class CircularDependencyError(RecipeError):
    """A cycle among step dependencies or recipe compositions."""

    code = CIRCULAR_DEPENDENCY

    def __init__(self, cycle: list[str], kind: str = "step"):
        self.cycle = list(cycle)
        self.kind = kind
        chain = " -> ".join(self.cycle)
        if kind == "recipe":
            message = f"Circular recipe dependency detected: {chain}"
        else:
            message = f"Circular step dependency detected: {chain}"
        super().__init__(message)


class RecipeNotFoundError(RecipeError):
    code = RECIPE_NOT_FOUND


class TemplateNotFoundError(RecipeError):
    code = TEMPLATE_NOT_FOUND


class ActionNotFoundError(RecipeError):
    code = ACTION_NOT_FOUND


class ToolNotFoundError(RecipeError):
    code = TOOL_NOT_FOUND


class ToolExecutionError(RecipeError):
    """A tool failed while performing its side effect."""

    code = EXECUTION_ERROR


class StepTimeoutError(RecipeError):
    code = STEP_TIMEOUT


class MissingAnswerError(RecipeError):
    """No answer was supplied for an AI step during the apply pass."""

    code = MISSING_ANSWER

    def __init__(self, key: str, step_name: str):
        self.key = key
        self.step_name = step_name
        super().__init__(
            f"Step '{step_name}': no answer provided for AI key '{key}'. "
            "Run without --answers to collect the prompt manifest first."
        )


class ConditionError(RecipeError):
    code = CONDITION_ERROR


class VariableResolutionError(RecipeError):
    """Variables could not be resolved or violate their declared constraints."""

    code = VARIABLE_ERROR

    def __init__(self, missing: list[str] | None = None, errors: list[str] | None = None):
        self.missing = list(missing or [])
        self.errors = list(errors or [])
        parts = []
        if self.missing:
            parts.append(f"Missing required variables: {', '.join(self.missing)}")
        parts.extend(self.errors)
        super().__init__("\n".join(parts) or "Variable resolution failed")


class UndefinedVariableError(ConfigurationError, ValueError):
    """A {{reference}} names a variable that does not exist."""

    def __init__(self, name: str, available: list[str]):
        self.name = name
        self.available = list(available)
        super().__init__(f"Undefined variable: {{{{{name}}}}}. Available variables: {', '.join(self.available)}")


def error_code(error: BaseException) -> str:
    """Return the stable code for any exception."""
    if isinstance(error, RecipeError):
        return error.code
    if isinstance(error, TimeoutError):
        return STEP_TIMEOUT
    return EXECUTION_ERROR


def is_retryable(error: BaseException) -> bool:
    """Whether retrying could change the outcome of ``error``."""
    return error_code(error) not in NON_RETRYABLE_CODES
