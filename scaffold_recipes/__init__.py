"""Scaffold recipes - run declarative code-generation recipes."""

import logging

from .context import StepContext
from .context import StepExecutionOptions
from .context import StepResult
from .engine import ExecutionReport
from .engine import RecipeEngine
from .errors import RecipeError
from .executor import ExecutionSummary
from .executor import StepExecutor
from .models import Recipe
from .resolution import RecipeResolver
from .tools import register_default_tools
from .tools.action import action
from .tools.codemod import codemod
from .tools.registry import ToolRegistry
from .validator import validate_recipe

__version__ = "0.1.0"

logger = logging.getLogger(__name__)

__all__ = [
    "ExecutionReport",
    "ExecutionSummary",
    "Recipe",
    "RecipeEngine",
    "RecipeError",
    "RecipeResolver",
    "StepContext",
    "StepExecutionOptions",
    "StepExecutor",
    "StepResult",
    "ToolRegistry",
    "action",
    "codemod",
    "register_default_tools",
    "validate_recipe",
    "__version__",
]
