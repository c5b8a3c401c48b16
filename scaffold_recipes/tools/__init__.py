"""Step tools and the registry that dispatches steps to them."""

from typing import Any

from .action import ActionTool
from .ai import AiTool
from .base import Tool
from .base import ToolResource
from .base import ToolValidationResult
from .codemod import CodemodTool
from .ensure_dirs import EnsureDirsTool
from .install import InstallTool
from .patch import PatchTool
from .prompt import PromptTool
from .query import QueryTool
from .recipe import RecipeTool
from .registry import ToolMetadata
from .registry import ToolRegistry
from .sequence import ParallelTool
from .sequence import SequenceTool
from .shell import ShellTool
from .template import TemplateTool

# tool class, category, description
DEFAULT_TOOLS: list[tuple[type[Tool], str, str]] = [
    (TemplateTool, "generation", "Render jinja2 templates into files"),
    (ActionTool, "generation", "Run a registered Python action"),
    (CodemodTool, "transformation", "Apply text transforms to existing files"),
    (RecipeTool, "composition", "Run another recipe as a step"),
    (SequenceTool, "composition", "Run nested steps in order"),
    (ParallelTool, "composition", "Run nested steps concurrently"),
    (ShellTool, "system", "Run a shell command"),
    (InstallTool, "system", "Install packages with the project's package manager"),
    (EnsureDirsTool, "filesystem", "Create missing directories"),
    (QueryTool, "data", "Read values from JSON/YAML/TOML/.env files"),
    (PatchTool, "data", "Deep-merge values into JSON/YAML/TOML files"),
    (PromptTool, "interaction", "Ask the operator for a value"),
    (AiTool, "ai", "Collect AI prompts and apply answers"),
]


def register_default_tools(registry: ToolRegistry) -> ToolRegistry:
    """Register every built-in tool under the name ``default``."""
    for tool_cls, category, description in DEFAULT_TOOLS:
        registry.register(
            tool_cls.tool_type,
            "default",
            tool_cls,
            ToolMetadata(description=description, category=category, tags=[category]),
        )
    return registry


def tool_health_summary(registry: ToolRegistry) -> dict[str, Any]:
    """Registry health plus the registered tools, for ``scaffold info --tools``."""
    health = registry.check_health()
    return {
        "healthy": health.healthy,
        "issues": health.issues,
        "recommendations": health.recommendations,
        "stats": health.stats,
        "tools": [
            {
                "type": registration.tool_type,
                "name": registration.name,
                "category": registration.metadata.category,
                "version": registration.metadata.version,
                "enabled": registration.metadata.enabled,
                "description": registration.metadata.description,
            }
            for registration in registry.search()
        ],
    }


__all__ = [
    "DEFAULT_TOOLS",
    "Tool",
    "ToolMetadata",
    "ToolRegistry",
    "ToolResource",
    "ToolValidationResult",
    "register_default_tools",
    "tool_health_summary",
]
