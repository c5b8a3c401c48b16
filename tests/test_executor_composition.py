"""Tests for recipe composition (sub-recipe execution) functionality."""

import pytest

from scaffold_recipes.config import EngineConfig
from scaffold_recipes.engine import RecipeEngine
from scaffold_recipes.errors import CIRCULAR_DEPENDENCY
from scaffold_recipes.errors import RECIPE_NOT_FOUND
from scaffold_recipes.errors import SUB_RECIPE_FAILED


CHILD_RECIPE = """
name: child
description: Writes a greeting
variables:
  greeting: hello
  target:
    required: true
steps:
  - name: write
    command: 'echo "{{greeting}} {{target}}" > greeting.txt'
"""


class TestBasicComposition:
    """Tests for basic recipe composition functionality."""

    @pytest.mark.asyncio
    async def test_sub_recipe_runs_with_inherited_variables(self, engine, temp_dir, write_recipe):
        """Parent variables flow into the sub-recipe by default."""
        write_recipe("child", CHILD_RECIPE)
        parent = write_recipe(
            "parent",
            """
name: parent
description: Composes child
variables:
  target: world
steps:
  - name: call-child
    recipe: ./child.yml
""",
        )

        report = await engine.execute(str(parent), project_root=temp_dir)

        assert report.status == "completed"
        assert (temp_dir / "greeting.txt").read_text().strip() == "hello world"
        output = report.summary.result_for("call-child").output
        assert output["recipe"] == "child"
        assert output["source"] == "local"
        assert output["completed"] == 1

    @pytest.mark.asyncio
    async def test_mapping_and_overrides(self, engine, temp_dir, write_recipe):
        """Mapped parent variables and explicit overrides reach the child; nothing else does."""
        write_recipe(
            "child",
            """
name: child
description: Records what it sees
variables:
  name:
    required: true
  suffix: none
steps:
  - name: write
    command: 'echo "{{name}} {{suffix}}" > seen.txt'
  - name: probe
    command: touch leaked.txt
    when: project_name
""",
        )
        parent = write_recipe(
            "parent",
            """
name: parent
description: Maps variables
variables:
  project_name: demo
steps:
  - name: call-child
    recipe: ./child.yml
    inherit_variables: false
    variable_mapping:
      project_name: name
    variables:
      suffix: "{{project_name}}-api"
""",
        )

        report = await engine.execute(str(parent), project_root=temp_dir)

        assert report.succeeded
        assert (temp_dir / "seen.txt").read_text().strip() == "demo demo-api"
        assert not (temp_dir / "leaked.txt").exists()

    @pytest.mark.asyncio
    async def test_sub_recipe_variables_do_not_leak(self, engine, temp_dir, write_recipe):
        """Variables set inside a sub-recipe stay there."""
        write_recipe(
            "child",
            """
name: child
description: Sets a variable
steps:
  - name: capture
    command: echo secret
    output: child_value
""",
        )
        parent = write_recipe(
            "parent",
            """
name: parent
description: Checks isolation
steps:
  - name: call-child
    recipe: ./child.yml
  - name: after
    command: touch leaked.txt
    when: child_value
""",
        )

        report = await engine.execute(str(parent), project_root=temp_dir)

        assert report.summary.result_for("after").status == "skipped"
        assert "child_value" not in report.variables

    @pytest.mark.asyncio
    async def test_sub_recipe_resolves_relative_to_parent(self, engine, temp_dir, write_recipe):
        """Relative references resolve against the composing recipe's directory."""
        write_recipe("child", CHILD_RECIPE, directory=temp_dir / "recipes" / "shared")
        parent = write_recipe(
            "parent",
            """
name: parent
description: Nested layout
steps:
  - name: call-child
    recipe: ./shared/child.yml
    variables:
      target: nested
""",
            directory=temp_dir / "recipes",
        )

        report = await engine.execute(str(parent), project_root=temp_dir)

        assert report.succeeded
        assert (temp_dir / "greeting.txt").read_text().strip() == "hello nested"

    @pytest.mark.asyncio
    async def test_working_dir_isolates_sub_recipe(self, engine, temp_dir, write_recipe):
        """A step-level working_dir becomes the sub-recipe's project root."""
        write_recipe("child", CHILD_RECIPE)
        parent = write_recipe(
            "parent",
            """
name: parent
description: Monorepo package
steps:
  - name: api
    recipe: ./child.yml
    working_dir: packages/api
    variables:
      target: api
""",
        )

        report = await engine.execute(str(parent), project_root=temp_dir)

        assert report.succeeded
        assert (temp_dir / "packages" / "api" / "greeting.txt").read_text().strip() == "hello api"
        assert not (temp_dir / "greeting.txt").exists()


class TestCompositionFailures:
    """Tests for cycles, depth limits and failing sub-recipes."""

    @pytest.mark.asyncio
    async def test_circular_composition(self, engine, temp_dir, write_recipe):
        """X -> Y -> X fails once with the full chain, even when the step allows retries."""
        write_recipe(
            "x",
            """
name: x
description: Calls y
steps:
  - name: call-y
    recipe: ./y.yml
    retries: 2
""",
        )
        write_recipe(
            "y",
            """
name: y
description: Calls x
steps:
  - name: call-x
    recipe: ./x.yml
""",
        )

        report = await engine.execute(str(temp_dir / "x.yml"), project_root=temp_dir)

        assert report.status == "failed"
        failed = report.failed_result
        assert failed.step_name == "call-y"
        assert failed.error.code == CIRCULAR_DEPENDENCY
        assert failed.retry_count == 0
        assert "Circular recipe dependency detected: x -> y -> x" in failed.error.message

    @pytest.mark.asyncio
    async def test_self_reference(self, engine, temp_dir, write_recipe):
        """A recipe that includes itself is caught before running again."""
        write_recipe(
            "loop",
            """
name: loop
description: Calls itself
steps:
  - name: again
    recipe: ./loop.yml
""",
        )

        report = await engine.execute(str(temp_dir / "loop.yml"), project_root=temp_dir)

        assert report.failed_result.error.code == "CIRCULAR_DEPENDENCY"
        assert "loop -> loop" in report.failed_result.error.message

    @pytest.mark.asyncio
    async def test_max_depth(self, temp_dir, write_recipe):
        """Nesting deeper than max_depth fails instead of recursing."""
        write_recipe("a", "name: a\ndescription: a\nsteps:\n  - name: to-b\n    recipe: ./b.yml\n")
        write_recipe("b", "name: b\ndescription: b\nsteps:\n  - name: to-c\n    recipe: ./c.yml\n")
        write_recipe("c", "name: c\ndescription: c\nsteps:\n  - name: done\n    command: 'true'\n")

        engine = RecipeEngine(config=EngineConfig(max_depth=2))
        report = await engine.execute(str(temp_dir / "a.yml"), project_root=temp_dir)
        await engine.close()

        assert report.status == "failed"
        assert "maximum recipe nesting depth 2 exceeded (a -> b)" in report.failed_result.error.message

        engine = RecipeEngine(config=EngineConfig(max_depth=3))
        report = await engine.execute(str(temp_dir / "a.yml"), project_root=temp_dir)
        await engine.close()
        assert report.succeeded

    @pytest.mark.asyncio
    async def test_failing_sub_recipe(self, engine, temp_dir, write_recipe):
        """A failing child step fails the composing step and halts the parent."""
        write_recipe(
            "child",
            """
name: child
description: Fails
steps:
  - name: boom
    command: exit 3
""",
        )
        parent = write_recipe(
            "parent",
            """
name: parent
description: Composes a failing child
steps:
  - name: call-child
    recipe: ./child.yml
  - name: after
    command: touch after.txt
""",
        )

        report = await engine.execute(str(parent), project_root=temp_dir)

        failed = report.failed_result
        assert failed.step_name == "call-child"
        assert failed.error.code == SUB_RECIPE_FAILED
        assert "nested step 'boom' failed" in failed.error.message
        assert "exit code 3" in failed.error.message
        assert report.summary.not_run == ["after"]
        assert not (temp_dir / "after.txt").exists()

    @pytest.mark.asyncio
    async def test_missing_sub_recipe(self, engine, temp_dir, write_recipe):
        parent = write_recipe(
            "parent",
            """
name: parent
description: Points nowhere
steps:
  - name: call-missing
    recipe: ./nowhere.yml
""",
        )

        report = await engine.execute(str(parent), project_root=temp_dir)

        assert report.failed_result.error.code == RECIPE_NOT_FOUND
        assert "Recipe not found: ./nowhere.yml" in report.failed_result.error.message
