"""Tests for the template tool."""

import pytest

from scaffold_recipes.context import COMPLETED
from scaffold_recipes.context import FAILED
from scaffold_recipes.context import SKIPPED
from scaffold_recipes.errors import INVALID_SYNTAX
from scaffold_recipes.errors import VALIDATION_ERROR
from scaffold_recipes.models import TemplateStep
from scaffold_recipes.tools.template import TemplateTool
from scaffold_recipes.tools.template import split_front_matter

MODEL_TEMPLATE = """---
to: src/{{ name }}.py
---
class {{ name | capitalize }}:
    pass
"""


def write_template(temp_dir, relative: str, content: str):
    """Helper to create a template under the templates/ directory."""
    path = temp_dir / "templates" / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


@pytest.fixture
def tool():
    return TemplateTool()


def model_step(**kwargs):
    return TemplateStep(name="model", template="model.py.j2", variables={"name": "api"}, **kwargs)


class TestFrontMatter:
    """Tests for front matter parsing."""

    def test_split(self):
        front, body = split_front_matter("---\nto: a.txt\n---\nbody\n")
        assert front == "to: a.txt\n"
        assert body == "body\n"

    def test_no_front_matter(self):
        assert split_front_matter("plain\n") == ("", "plain\n")

    def test_unterminated_front_matter_is_body(self):
        text = "---\nto: a.txt\nbody\n"
        assert split_front_matter(text) == ("", text)


class TestRendering:
    """Tests for rendering single files and directories."""

    @pytest.mark.asyncio
    async def test_single_file_with_front_matter(self, tool, context, temp_dir):
        write_template(temp_dir, "model.py.j2", MODEL_TEMPLATE)

        result = await tool.execute(model_step(), context)

        assert result.status == COMPLETED
        assert (temp_dir / "src" / "api.py").read_text() == "class Api:\n    pass\n"
        assert result.files_created == ("src/api.py",)
        assert result.output["files"] == {"src/api.py": "added"}

    @pytest.mark.asyncio
    async def test_step_to_overrides_front_matter(self, tool, context, temp_dir):
        write_template(temp_dir, "model.py.j2", MODEL_TEMPLATE)

        result = await tool.execute(model_step(to="lib/{{ name }}_model.py"), context)

        assert result.files_created == ("lib/api_model.py",)
        assert not (temp_dir / "src").exists()

    @pytest.mark.asyncio
    async def test_context_variables_are_visible(self, tool, context, temp_dir):
        write_template(temp_dir, "hello.txt.j2", "---\nto: hello.txt\n---\nHello {{ who }} from {{ step.name }}\n")
        context.variables["who"] = "world"

        await tool.execute(TemplateStep(name="hello", template="hello.txt.j2"), context)

        assert (temp_dir / "hello.txt").read_text() == "Hello world from hello\n"

    @pytest.mark.asyncio
    async def test_directory_template(self, tool, context, temp_dir):
        write_template(temp_dir, "app/README.md.j2", "# {{ name }}\n")
        write_template(temp_dir, "app/src/main.py.jinja", "print('{{ name }}')\n")
        write_template(temp_dir, "app/scratch.tmp", "ignored\n")
        step = TemplateStep(name="app", template="app", variables={"name": "demo"}, exclude=["*.tmp"])

        result = await tool.execute(step, context)

        assert result.status == COMPLETED
        assert sorted(result.files_created) == ["README.md", "src/main.py"]
        assert (temp_dir / "README.md").read_text() == "# demo\n"
        assert (temp_dir / "src" / "main.py").read_text() == "print('demo')\n"
        assert not (temp_dir / "scratch.tmp").exists()

    @pytest.mark.asyncio
    async def test_undefined_variable_fails(self, tool, context, temp_dir):
        write_template(temp_dir, "broken.txt.j2", "---\nto: broken.txt\n---\n{{ missing }}\n")

        result = await tool.execute(TemplateStep(name="broken", template="broken.txt.j2"), context)

        assert result.status == FAILED
        assert result.error.code == INVALID_SYNTAX
        assert "Failed to render template" in result.error.message
        assert not (temp_dir / "broken.txt").exists()

    @pytest.mark.asyncio
    async def test_missing_template_fails_validation(self, tool, context):
        result = await tool.execute(TemplateStep(name="nope", template="nope.j2"), context)
        assert result.error.code == VALIDATION_ERROR
        assert "Template not found: nope.j2" in result.error.message

    @pytest.mark.asyncio
    async def test_skip_if(self, tool, context, temp_dir):
        write_template(temp_dir, "Dockerfile.j2", "---\nto: Dockerfile\nskip_if: not use_docker\n---\nFROM python\n")
        context.variables["use_docker"] = False

        result = await tool.execute(TemplateStep(name="docker", template="Dockerfile.j2"), context)

        assert result.status == SKIPPED
        assert not (temp_dir / "Dockerfile").exists()


class TestExistingFiles:
    """Idempotence and overwrite rules."""

    @pytest.mark.asyncio
    async def test_rerun_is_identical(self, tool, context, temp_dir):
        write_template(temp_dir, "model.py.j2", MODEL_TEMPLATE)
        await tool.execute(model_step(), context)

        result = await tool.execute(model_step(), context)

        assert result.status == COMPLETED
        assert result.output["files"] == {"src/api.py": "identical"}
        assert result.files_created == ()
        assert result.files_modified == ()

    @pytest.mark.asyncio
    async def test_unless_exists_skips(self, tool, context, temp_dir):
        write_template(temp_dir, "model.py.j2", MODEL_TEMPLATE)
        (temp_dir / "src").mkdir()
        (temp_dir / "src" / "api.py").write_text("# hand written\n")

        result = await tool.execute(model_step(unless_exists=True), context)

        assert result.status == SKIPPED
        assert (temp_dir / "src" / "api.py").read_text() == "# hand written\n"

    @pytest.mark.asyncio
    async def test_changed_file_is_not_overwritten(self, tool, context, temp_dir):
        write_template(temp_dir, "model.py.j2", MODEL_TEMPLATE)
        (temp_dir / "src").mkdir()
        (temp_dir / "src" / "api.py").write_text("# hand written\n")

        result = await tool.execute(model_step(), context)

        assert result.status == FAILED
        assert "src/api.py already exists" in result.error.message
        assert (temp_dir / "src" / "api.py").read_text() == "# hand written\n"

    @pytest.mark.asyncio
    async def test_force_overwrites(self, tool, context, temp_dir):
        write_template(temp_dir, "model.py.j2", MODEL_TEMPLATE)
        (temp_dir / "src").mkdir()
        (temp_dir / "src" / "api.py").write_text("# hand written\n")

        result = await tool.execute(model_step(force=True), context)

        assert result.status == COMPLETED
        assert result.files_modified == ("src/api.py",)
        assert (temp_dir / "src" / "api.py").read_text() == "class Api:\n    pass\n"

    @pytest.mark.asyncio
    async def test_run_level_force(self, tool, context, temp_dir):
        write_template(temp_dir, "model.py.j2", MODEL_TEMPLATE)
        (temp_dir / "src").mkdir()
        (temp_dir / "src" / "api.py").write_text("# hand written\n")
        context.force = True

        result = await tool.execute(model_step(), context)

        assert result.output["files"] == {"src/api.py": "forced"}

    @pytest.mark.asyncio
    async def test_inject(self, tool, context, temp_dir):
        write_template(
            temp_dir,
            "route.j2",
            "---\nto: routes.py\ninject: true\nafter: '# routes'\n---\nroute('/{{ name }}')\n",
        )
        (temp_dir / "routes.py").write_text("# routes\nroute('/')\n")
        step = TemplateStep(name="route", template="route.j2", variables={"name": "users"})

        first = await tool.execute(step, context)
        second = await tool.execute(step, context)

        assert first.output["files"] == {"routes.py": "injected"}
        assert first.files_modified == ("routes.py",)
        assert second.output["files"] == {"routes.py": "identical"}
        assert (temp_dir / "routes.py").read_text() == "# routes\nroute('/users')\nroute('/')\n"


class TestDryWalk:
    """Dry runs and collect passes render without writing."""

    @pytest.mark.asyncio
    async def test_dry_run(self, tool, context, temp_dir):
        write_template(temp_dir, "model.py.j2", MODEL_TEMPLATE)
        context.dry_run = True

        result = await tool.execute(model_step(), context)

        assert result.status == COMPLETED
        assert result.output == {"files": {"src/api.py": "would-write"}, "dry_run": True}
        assert result.files_created == ()
        assert not (temp_dir / "src").exists()

    @pytest.mark.asyncio
    async def test_collect_pass_tolerates_pending_answers(self, tool, context, temp_dir):
        write_template(temp_dir, "about.md.j2", "---\nto: ABOUT.md\n---\n{{ ai_summary }}\n")
        context.collect_mode = True

        result = await tool.execute(TemplateStep(name="about", template="about.md.j2"), context)

        assert result.status == COMPLETED
        assert result.output["files"] == {"ABOUT.md": "would-write"}
        assert not (temp_dir / "ABOUT.md").exists()
