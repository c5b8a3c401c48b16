"""Tests for variable substitution and resolution."""

import pytest

from scaffold_recipes.errors import CONFIGURATION_ERROR
from scaffold_recipes.errors import UndefinedVariableError
from scaffold_recipes.errors import VariableResolutionError
from scaffold_recipes.models import VariableSpec
from scaffold_recipes.prompts import NonInteractivePrompter
from scaffold_recipes.prompts import PromptRequest
from scaffold_recipes.prompts import StaticPrompter
from scaffold_recipes.variables import VariableResolver
from scaffold_recipes.variables import lookup_path
from scaffold_recipes.variables import substitute_recursive
from scaffold_recipes.variables import substitute_string
from scaffold_recipes.variables import substitute_variables


class TestSubstitution:
    """Tests for {{variable}} substitution."""

    def test_simple_and_nested_references(self):
        variables = {"name": "api", "db": {"host": "localhost", "port": 5432}}
        assert substitute_string("{{name}}-{{ db.host }}:{{db.port}}", variables) == "api-localhost:5432"

    def test_lone_reference_keeps_raw_value(self):
        variables = {"features": ["auth", "api"]}
        assert substitute_variables("{{features}}", variables) == ["auth", "api"]

    def test_embedded_collections_render_as_json(self):
        assert substitute_string("x={{cfg}}", {"cfg": {"a": 1}}) == 'x={"a": 1}'
        assert substitute_string("on={{flag}}", {"flag": True}) == "on=true"

    def test_undefined_variable_strict(self):
        with pytest.raises(UndefinedVariableError, match=r"Undefined variable: \{\{missing\}\}") as exc_info:
            substitute_string("{{missing}}", {"name": "x"})
        assert isinstance(exc_info.value, ValueError)
        assert exc_info.value.code == CONFIGURATION_ERROR
        assert not exc_info.value.retryable

    def test_undefined_variable_lenient(self):
        assert substitute_string("hello {{missing}}", {}, strict=False) == "hello {{missing}}"

    def test_recursive(self):
        value = {"path": "src/{{name}}", "tags": ["{{name}}", 3], "flag": True}
        assert substitute_recursive(value, {"name": "core"}) == {"path": "src/core", "tags": ["core", 3], "flag": True}

    def test_lookup_path_through_lists(self):
        data = {"items": [{"id": "first"}, {"id": "second"}]}
        assert lookup_path(data, "items.1.id") == "second"
        assert lookup_path(data, "items.5.id", "none") == "none"


class TestVariableResolver:
    """Precedence: provided > default > prompt."""

    def test_provided_beats_default(self):
        specs = {"name": VariableSpec(name="name", default="fallback")}
        assert VariableResolver().resolve(specs, {"name": "given"}) == {"name": "given"}

    def test_default_used_when_not_provided(self):
        specs = {"name": VariableSpec(name="name", default="fallback")}
        assert VariableResolver().resolve(specs, {}) == {"name": "fallback"}

    def test_prompts_for_required_variables(self):
        prompter = StaticPrompter({"name": "prompted"})
        specs = {"name": VariableSpec(name="name", required=True)}
        assert VariableResolver(prompter).resolve(specs) == {"name": "prompted"}
        assert prompter.asked == ["name"]

    def test_default_beats_prompt(self):
        prompter = StaticPrompter({"name": "prompted"})
        specs = {"name": VariableSpec(name="name", required=True, default="fallback")}
        assert VariableResolver(prompter).resolve(specs) == {"name": "fallback"}
        assert prompter.asked == []

    def test_missing_required_variables(self):
        specs = {
            "a": VariableSpec(name="a", required=True),
            "b": VariableSpec(name="b", required=True),
        }
        with pytest.raises(VariableResolutionError, match="Missing required variables: a, b") as exc_info:
            VariableResolver(StaticPrompter({})).resolve(specs, skip_prompts=True)
        assert exc_info.value.missing == ["a", "b"]

    def test_non_interactive_prompter_never_prompts(self):
        specs = {"a": VariableSpec(name="a", required=True)}
        with pytest.raises(VariableResolutionError):
            VariableResolver(NonInteractivePrompter()).resolve(specs)

    def test_provided_strings_are_coerced(self):
        specs = {
            "port": VariableSpec(name="port", type="number"),
            "docker": VariableSpec(name="docker", type="boolean"),
        }
        resolved = VariableResolver().resolve(specs, {"port": "8080", "docker": "true"})
        assert resolved == {"port": 8080, "docker": True}

    def test_constraint_violations(self):
        specs = {"db": VariableSpec(name="db", type="enum", values=["postgres", "sqlite"])}
        with pytest.raises(VariableResolutionError, match="must be one of postgres, sqlite"):
            VariableResolver().resolve(specs, {"db": "oracle"})

    def test_undeclared_values_pass_through(self):
        assert VariableResolver().resolve({}, {"extra": 1}) == {"extra": 1}

    def test_optional_without_default_is_omitted(self):
        specs = {"opt": VariableSpec(name="opt")}
        assert VariableResolver().resolve(specs) == {}


class TestPrompters:
    """Tests for the prompter implementations."""

    def test_non_interactive_defaults(self):
        prompter = NonInteractivePrompter()
        assert prompter.ask(PromptRequest(name="x", message="x", default="d")) == "d"
        assert prompter.ask(PromptRequest(name="x", message="x", prompt_type="confirm")) is False
        assert prompter.ask(PromptRequest(name="x", message="x", prompt_type="multiselect")) == []

    def test_request_check_strips_delimiters(self):
        request = PromptRequest(name="x", message="x", validate_pattern="/^[a-z]+$/")
        assert request.check("abc") is None
        assert "does not match" in request.check("ABC")
