"""Tests for the scaffold command line interface."""

import json

import pytest
from click.testing import CliRunner

from scaffold_recipes.cli import EXIT_AWAITING_ANSWERS
from scaffold_recipes.cli import EXIT_FAILED
from scaffold_recipes.cli import EXIT_OK
from scaffold_recipes.cli import main

HELLO_RECIPE = """
name: hello
description: Writes a greeting
version: "0.1"
variables:
  who: world
steps:
  - name: write
    command: 'echo "hello {{who}}" > hello.txt'
"""

AI_RECIPE = """
name: docs
description: Asks for a summary
steps:
  - name: summary
    tool: ai
    prompt: Summarize the project
    output:
      type: file
      to: SUMMARY.md
"""


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def isolated_env(temp_dir, monkeypatch):
    monkeypatch.chdir(temp_dir)
    for name in ("SCAFFOLD_CONFIG", "SCAFFOLD_MAX_PARALLEL", "SCAFFOLD_TIMEOUT", "SCAFFOLD_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


class TestRun:
    """Tests for the run command."""

    def test_success(self, runner, temp_dir, write_recipe):
        path = write_recipe("hello", HELLO_RECIPE)

        result = runner.invoke(main, ["run", str(path), "--var", "who=cli", "--cwd", str(temp_dir)])

        assert result.exit_code == EXIT_OK
        assert "Recipe 'hello' completed: 1 completed, 0 failed, 0 skipped" in result.output
        assert (temp_dir / "hello.txt").read_text().strip() == "hello cli"

    def test_json_report(self, runner, temp_dir, write_recipe):
        path = write_recipe("hello", HELLO_RECIPE)

        result = runner.invoke(main, ["run", str(path), "--json", "--skip-prompts"])

        assert result.exit_code == EXIT_OK
        assert '"status": "completed"' in result.output

    def test_failure(self, runner, write_recipe):
        path = write_recipe("fail", "name: fail\ndescription: x\nsteps:\n  - name: boom\n    command: exit 3\n")

        result = runner.invoke(main, ["run", str(path)])

        assert result.exit_code == EXIT_FAILED
        assert "Step 'boom' (shell) failed [EXECUTION_ERROR]:" in result.output

    def test_bad_var(self, runner, write_recipe):
        path = write_recipe("hello", HELLO_RECIPE)
        result = runner.invoke(main, ["run", str(path), "--var", "novalue"])
        assert result.exit_code == 2
        assert "expected name=value" in result.output

    def test_missing_recipe(self, runner):
        result = runner.invoke(main, ["run", "./absent.yml"])
        assert result.exit_code == EXIT_FAILED
        assert "Recipe not found: ./absent.yml" in result.output

    def test_awaiting_answers_then_apply(self, runner, temp_dir, write_recipe):
        path = write_recipe("docs", AI_RECIPE)
        manifest_path = temp_dir / "manifest.json"

        result = runner.invoke(main, ["run", str(path), "--manifest", str(manifest_path)])

        assert result.exit_code == EXIT_AWAITING_ANSWERS
        assert "awaiting 1 AI answer(s)" in result.output
        manifest = json.loads(manifest_path.read_text())
        assert manifest["entries"][0]["key"] == "summary"
        assert not (temp_dir / "SUMMARY.md").exists()

        answers = temp_dir / "answers.json"
        answers.write_text(json.dumps({"summary": "It scaffolds things."}))
        result = runner.invoke(main, ["run", str(path), "--answers", str(answers)])

        assert result.exit_code == EXIT_OK
        assert (temp_dir / "SUMMARY.md").read_text() == "It scaffolds things."

    def test_manifest_printed_without_path(self, runner, write_recipe):
        path = write_recipe("docs", AI_RECIPE)
        result = runner.invoke(main, ["run", str(path)])
        assert result.exit_code == EXIT_AWAITING_ANSWERS
        assert '"key": "summary"' in result.output

    def test_config_answers_path(self, runner, temp_dir, write_recipe):
        path = write_recipe("docs", AI_RECIPE)
        (temp_dir / "answers.json").write_text(json.dumps({"summary": "From config."}))
        (temp_dir / "scaffold.config.yml").write_text("answers_path: answers.json\n")

        result = runner.invoke(main, ["run", str(path)])

        assert result.exit_code == EXIT_OK
        assert (temp_dir / "SUMMARY.md").read_text() == "From config."

    def test_invalid_config(self, runner, temp_dir, write_recipe):
        path = write_recipe("hello", HELLO_RECIPE)
        (temp_dir / "scaffold.config.yml").write_text("turbo: true\n")
        result = runner.invoke(main, ["run", str(path)])
        assert result.exit_code == EXIT_FAILED
        assert "Unknown config key(s)" in result.output


class TestValidate:
    """Tests for the validate command."""

    def test_valid(self, runner, write_recipe):
        path = write_recipe("hello", HELLO_RECIPE)
        result = runner.invoke(main, ["validate", str(path)])
        assert result.exit_code == EXIT_OK
        assert "Recipe 'hello' is valid (1 steps)" in result.output

    def test_invalid(self, runner, write_recipe):
        path = write_recipe(
            "bad", "name: bad\ndescription: x\nsteps:\n  - name: a\n    command: 'true'\n    depends_on: [ghost]\n"
        )
        result = runner.invoke(main, ["validate", str(path)])
        assert result.exit_code == EXIT_FAILED
        assert "depends_on references unknown step 'ghost'" in result.output

    def test_nameless_step_is_a_validation_error(self, runner, write_recipe):
        path = write_recipe("nameless", "name: nameless\ndescription: x\nsteps:\n  - tool: shell\n    command: echo hi\n")

        result = runner.invoke(main, ["run", str(path)])

        assert result.exit_code == EXIT_FAILED
        assert "Step missing required field: name" in result.output
        assert "Unexpected error" not in result.output


class TestListAndInfo:
    """Tests for the list and info commands."""

    def test_list(self, runner, temp_dir, write_recipe):
        write_recipe("hello", HELLO_RECIPE, directory=temp_dir / "recipes")
        (temp_dir / "recipes" / "notes.yml").write_text("just: data\n")

        result = runner.invoke(main, ["list"])

        assert result.exit_code == EXIT_OK
        assert "hello (0.1)" in result.output
        assert "Writes a greeting" in result.output
        assert "notes" not in result.output

    def test_list_empty(self, runner, temp_dir):
        result = runner.invoke(main, ["list", str(temp_dir)])
        assert "No recipes found" in result.output

    def test_info(self, runner, write_recipe):
        path = write_recipe("hello", HELLO_RECIPE)

        result = runner.invoke(main, ["info", str(path)])

        assert result.exit_code == EXIT_OK
        assert "Name:        hello" in result.output
        assert "who (string, optional, default='world')" in result.output
        assert "- write [shell]" in result.output

    def test_info_tools(self, runner):
        result = runner.invoke(main, ["info", "--tools"])
        assert result.exit_code == EXIT_OK
        assert "registry healthy" in result.output
        assert "template" in result.output

    def test_info_requires_recipe(self, runner):
        result = runner.invoke(main, ["info"])
        assert result.exit_code == 2
