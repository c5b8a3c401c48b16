"""Tests for recipe models and YAML parsing."""

import pytest

from scaffold_recipes.models import AiOutput
from scaffold_recipes.models import AiStep
from scaffold_recipes.models import EnsureDirsStep
from scaffold_recipes.models import ParallelStep
from scaffold_recipes.models import PromptStep
from scaffold_recipes.models import Recipe
from scaffold_recipes.models import SequenceStep
from scaffold_recipes.models import ShellStep
from scaffold_recipes.models import UnparsedStep
from scaffold_recipes.models import VariableSpec
from scaffold_recipes.models import parse_step
from scaffold_recipes.models import snake_case


class TestParseStep:
    """Tests for step parsing and tool inference."""

    def test_infers_shell_from_command(self):
        step = parse_step({"name": "build", "command": "make"})
        assert isinstance(step, ShellStep)
        assert step.tool == "shell"
        assert step.command == "make"

    def test_camel_case_keys_are_normalized(self):
        """camelCase keys map onto snake_case fields."""
        step = parse_step({"name": "b", "command": "ls", "dependsOn": "a", "continueOnError": True})
        assert step.depends_on == ["a"]
        assert step.continue_on_error is True

    def test_condition_alias_becomes_when(self):
        step = parse_step({"name": "b", "command": "ls", "condition": "use_docker"})
        assert step.when == "use_docker"

    def test_tool_name_is_normalized(self):
        step = parse_step({"name": "dirs", "tool": "ensureDirs", "paths": "src"})
        assert isinstance(step, EnsureDirsStep)
        assert step.paths == ["src"]

    def test_prompt_type_and_validate_aliases(self):
        step = parse_step(
            {
                "name": "ask",
                "tool": "prompt",
                "variable": "db",
                "type": "select",
                "options": ["postgres", "sqlite"],
                "validate": "/^[a-z]+$/",
            }
        )
        assert isinstance(step, PromptStep)
        assert step.prompt_type == "select"
        assert step.validate_pattern == "/^[a-z]+$/"
        assert step.validate() == []

    def test_unknown_tool_is_reported_by_validation(self):
        step = parse_step({"name": "x", "tool": "teleport", "depends_on": "a"})
        assert isinstance(step, UnparsedStep)
        assert step.depends_on == ["a"]
        assert any("Step 'x': unknown tool 'teleport'" in e for e in step.validate())

    def test_undeterminable_tool_is_reported_by_validation(self):
        step = parse_step({"name": "x"})
        assert isinstance(step, UnparsedStep)
        assert any("cannot determine tool" in e for e in step.validate())

    def test_missing_name_is_a_validation_error(self):
        step = parse_step({"tool": "shell", "command": "echo hi"})
        assert isinstance(step, ShellStep)
        assert step.validate() == ["Step missing required field: name"]

    def test_non_mapping_step(self):
        step = parse_step("echo hi")
        assert any("each step must be a dictionary, got str" in e for e in step.validate())

    def test_unknown_ai_output_field(self):
        step = parse_step(
            {"name": "docs", "tool": "ai", "prompt": "p", "output": {"type": "file", "to": "A.md", "mode": "x"}}
        )
        assert step.output == AiOutput(type="file", to="A.md")
        assert "Step 'docs': unknown output field(s): mode" in step.validate()

    def test_unknown_fields_are_reported_by_validation(self):
        step = parse_step({"name": "s", "command": "ls", "bogus": 1})
        assert step.unknown_fields == ["bogus"]
        assert any("unknown field(s) for shell step: bogus" in e for e in step.validate())

    def test_ai_output_shorthand(self):
        step = parse_step({"name": "summary", "tool": "ai", "prompt": "Summarize", "output": "summary_text"})
        assert isinstance(step, AiStep)
        assert step.output == AiOutput(type="variable", variable="summary_text")
        assert step.answer_key == "summary"

    def test_ai_output_mapping(self):
        step = parse_step(
            {
                "name": "docs",
                "tool": "ai",
                "key": "readme-intro",
                "prompt": "Write an intro",
                "context": "project is a CLI",
                "output": {"type": "inject", "injectInto": "README.md", "after": "# Title"},
            }
        )
        assert step.answer_key == "readme-intro"
        assert step.context == ["project is a CLI"]
        assert step.output.inject_into == "README.md"
        assert step.validate() == []

    def test_sequence_and_parallel_groups(self):
        seq = parse_step({"name": "grp", "sequence": [{"name": "a", "command": "x"}]})
        par = parse_step({"name": "par", "parallel": [{"name": "b", "command": "y"}], "limit": 2})
        assert isinstance(seq, SequenceStep)
        assert [s.name for s in seq.children()] == ["a"]
        assert isinstance(par, ParallelStep)
        assert par.limit == 2
        assert par.parallel is False


class TestStepValidation:
    """Tests for per-step field validation."""

    def test_self_dependency(self):
        step = ShellStep(name="a", command="ls", depends_on=["a"])
        assert "Step 'a': cannot depend on itself" in step.validate()

    def test_invalid_when_expression(self):
        step = ShellStep(name="a", command="ls", when="foo ==")
        assert any("invalid 'when' condition" in e for e in step.validate())

    def test_ai_inject_requires_target(self):
        step = AiStep(name="a", prompt="p", output=AiOutput(type="inject"))
        assert any("requires 'inject_into'" in e for e in step.validate())

    def test_negative_retries(self):
        step = ShellStep(name="a", command="ls", retries=-1)
        assert "Step 'a': retries must be a non-negative integer" in step.validate()


class TestVariableSpec:
    """Tests for variable declarations."""

    def test_scalar_declaration_is_default(self):
        spec = VariableSpec.from_dict("count", 3)
        assert spec.type == "number"
        assert spec.default == 3

    def test_unknown_field_raises(self):
        with pytest.raises(ValueError, match="unknown field"):
            VariableSpec.from_dict("x", {"type": "string", "colour": "red"})

    @pytest.mark.parametrize(
        "var_type,raw,expected",
        [
            ("number", "5", 5),
            ("number", "2.5", 2.5),
            ("boolean", "yes", True),
            ("boolean", "off", False),
            ("array", "a, b", ["a", "b"]),
            ("array", "[1, 2]", [1, 2]),
            ("string", "plain", "plain"),
        ],
    )
    def test_coerce(self, var_type, raw, expected):
        assert VariableSpec(name="v", type=var_type).coerce(raw) == expected

    def test_check_constraints(self):
        spec = VariableSpec(name="name", pattern="^[a-z]+$", min=2, max=5)
        assert spec.check("abc") == []
        assert any("does not match" in p for p in spec.check("ABC"))
        assert any("at most 5 in length" in p for p in spec.check("abcdefg"))

    def test_enum_requires_values(self):
        spec = VariableSpec(name="db", type="enum")
        assert any("non-empty 'values'" in e for e in spec.validate())

    def test_default_must_satisfy_spec(self):
        spec = VariableSpec(name="port", type="number", min=1024, default=80)
        assert any("default must be at least 1024" in e for e in spec.validate())


class TestRecipe:
    """Tests for whole-recipe parsing and validation."""

    def test_from_string(self):
        recipe = Recipe.from_string(
            """
name: demo
description: Demo recipe
settings:
  maxParallel: 2
  continueOnError: true
variables:
  project_name:
    type: string
    required: true
steps:
  - name: hello
    command: echo hi
"""
        )
        assert recipe.name == "demo"
        assert recipe.settings.max_parallel == 2
        assert recipe.settings.continue_on_error is True
        assert recipe.variables["project_name"].required is True
        assert recipe.validate() == []

    def test_invalid_yaml(self):
        with pytest.raises(ValueError, match="Invalid recipe YAML"):
            Recipe.from_string("name: [unclosed")

    def test_unknown_setting_and_variable_field_are_collected(self):
        recipe = Recipe.from_dict(
            {
                "name": "x",
                "settings": {"turbo": True},
                "variables": {"a": {"colour": "red"}, "b": "ok"},
                "steps": [{"name": "s", "command": "true"}],
            }
        )
        errors = recipe.validate()
        assert "settings: unknown field(s): turbo" in errors
        assert "Variable 'a': unknown field(s): colour" in errors
        assert list(recipe.variables) == ["b"]

    def test_every_problem_is_reported_together(self):
        recipe = Recipe.from_string(
            """
name: broken
steps:
  - tool: shell
    command: echo hi
  - name: a
    tool: nope
  - name: a
    command: echo again
    dependsOn: [zzz]
  - name: docs
    tool: ai
    prompt: Summarize
    output:
      type: file
      to: DOCS.md
      mode: overwrite
"""
        )
        errors = recipe.validate()

        assert "Step missing required field: name" in errors
        assert any(e.startswith("Step 'a': unknown tool 'nope'") for e in errors)
        assert "Duplicate step names: a" in errors
        assert "Step 'a': depends_on references unknown step 'zzz'" in errors
        assert "Step 'docs': unknown output field(s): mode" in errors

    def test_duplicate_names_across_nesting(self):
        recipe = Recipe.from_dict(
            {
                "name": "dupes",
                "steps": [
                    {"name": "a", "command": "x"},
                    {"name": "grp", "sequence": [{"name": "a", "command": "y"}]},
                ],
            }
        )
        assert "Duplicate step names: a" in recipe.validate()

    def test_depends_on_must_be_sibling(self):
        recipe = Recipe.from_dict(
            {
                "name": "scope",
                "steps": [
                    {"name": "a", "command": "x"},
                    {"name": "grp", "sequence": [{"name": "b", "command": "y", "depends_on": ["a"]}]},
                ],
            }
        )
        assert "Step 'b': depends_on references unknown step 'a'" in recipe.validate()

    def test_requires_steps(self):
        recipe = Recipe(name="empty")
        assert "Recipe must have at least one step" in recipe.validate()

    def test_from_yaml_missing(self, temp_dir):
        with pytest.raises(FileNotFoundError):
            Recipe.from_yaml(temp_dir / "missing.yml")

    def test_has_ai_steps(self):
        recipe = Recipe.from_dict(
            {"name": "r", "steps": [{"name": "grp", "sequence": [{"name": "a", "tool": "ai", "prompt": "p", "output": "x"}]}]}
        )
        assert recipe.has_ai_steps()


def test_snake_case():
    assert snake_case("continueOnError") == "continue_on_error"
    assert snake_case("max-parallel") == "max_parallel"
    assert snake_case("already_snake") == "already_snake"
