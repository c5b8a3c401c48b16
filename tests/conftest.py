"""Shared fixtures for scaffold recipe tests."""

from pathlib import Path

import pytest
import pytest_asyncio

from scaffold_recipes.context import StepContext
from scaffold_recipes.context import StepExecutionOptions
from scaffold_recipes.engine import RecipeEngine
from scaffold_recipes.tools import register_default_tools
from scaffold_recipes.tools.registry import ToolRegistry


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """A scratch project root."""
    return tmp_path


@pytest.fixture
def registry() -> ToolRegistry:
    """A registry with every built-in tool."""
    return register_default_tools(ToolRegistry())


@pytest.fixture
def context(temp_dir: Path) -> StepContext:
    return StepContext(project_root=temp_dir)


@pytest.fixture
def fast_options() -> StepExecutionOptions:
    """Execution options without retry backoff delays."""
    return StepExecutionOptions(retry_base_delay=0.0, retry_max_delay=0.0)


@pytest_asyncio.fixture
async def engine():
    """A recipe engine, closed after the test."""
    engine = RecipeEngine()
    yield engine
    await engine.close()


@pytest.fixture
def write_recipe(temp_dir: Path):
    """Helper to write recipe YAML files into the project."""

    def write(name: str, yaml_content: str, directory: Path | None = None) -> Path:
        path = (directory or temp_dir) / f"{name}.yml"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml_content)
        return path

    return write
