"""
Command line interface for scaffold recipes.

Exit codes: 0 success, 1 validation or execution failure, 2 awaiting AI
answers (the prompt manifest was printed or written to ``--manifest``).
"""

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
import yaml

from . import __version__
from .ai import load_answers
from .ai import write_manifest
from .config import EngineConfig
from .config import load_config
from .engine import AWAITING_ANSWERS
from .engine import RecipeEngine
from .engine import render_report
from .errors import RecipeError
from .models import Recipe
from .prompts import ClickPrompter
from .prompts import NonInteractivePrompter
from .resolution import RECIPE_SUFFIXES
from .tools import tool_health_summary

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_AWAITING_ANSWERS = 2


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _parse_vars(pairs: tuple[str, ...]) -> dict[str, str]:
    variables = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name.strip():
            raise click.BadParameter(f"expected name=value, got '{pair}'", param_hint="--var")
        variables[name.strip()] = value
    return variables


def _fail(message: str) -> None:
    click.echo(f"✗ {message}", err=True)
    raise SystemExit(EXIT_FAILED)


@click.group()
@click.version_option(version=__version__, prog_name="scaffold")
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Engine config file (YAML).")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    help="Logging level (overrides config and SCAFFOLD_LOG_LEVEL).",
)
@click.pass_context
def main(ctx, config_path, log_level):
    """
    scaffold - run code-generation recipes.

    Recipes are YAML files of steps (templates, actions, codemods, shell
    commands, sub-recipes, prompts and AI prompts) executed in dependency
    order.
    """
    ctx.ensure_object(dict)
    try:
        config = load_config(config_path)
    except RecipeError as e:
        _configure_logging(log_level or "WARNING")
        _fail(str(e))
    if log_level:
        config.log_level = log_level.upper()
    _configure_logging(config.log_level)
    ctx.obj["config"] = config


def _engine(ctx, interactive: bool = True) -> RecipeEngine:
    config: EngineConfig = ctx.obj["config"]
    prompter = ClickPrompter() if interactive and sys.stdin.isatty() else NonInteractivePrompter()
    return RecipeEngine(config=config, prompter=prompter)


@main.command()
@click.argument("recipe")
@click.option("--var", "var_pairs", multiple=True, metavar="NAME=VALUE", help="Set a recipe variable (repeatable).")
@click.option("--skip-prompts", is_flag=True, help="Never prompt; use defaults and fail on missing variables.")
@click.option("--dry-run", is_flag=True, help="Show what would happen without writing anything.")
@click.option("--force", is_flag=True, help="Overwrite files that differ from rendered templates.")
@click.option("--continue-on-error", is_flag=True, help="Keep running independent steps after a failure.")
@click.option("--answers", "answers_path", type=click.Path(path_type=Path), help="JSON answers for AI steps.")
@click.option("--manifest", "manifest_path", type=click.Path(path_type=Path), help="Write the AI prompt manifest here.")
@click.option(
    "--cwd",
    "cwd",
    type=click.Path(file_okay=False, path_type=Path),
    help="Project root (default: current directory).",
)
@click.option(
    "--collect/--no-collect",
    default=None,
    help="Force or suppress the AI collect pass (default: collect when AI steps have no answers).",
)
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON.")
@click.pass_context
def run(
    ctx,
    recipe,
    var_pairs,
    skip_prompts,
    dry_run,
    force,
    continue_on_error,
    answers_path,
    manifest_path,
    cwd,
    collect,
    as_json,
):
    """Run RECIPE (path, package:name, github:user/repo or URL)."""
    config: EngineConfig = ctx.obj["config"]
    variables = _parse_vars(var_pairs)
    project_root = (cwd or Path.cwd()).resolve()
    engine = _engine(ctx, interactive=not skip_prompts)

    answers_path = answers_path or config.answers_path
    try:
        answers = load_answers(answers_path) if answers_path else None
    except RecipeError as e:
        _fail(str(e))

    async def execute():
        try:
            resolution = await engine.load(recipe, project_root)
            needs_collect = collect
            if needs_collect is None:
                needs_collect = answers is None and resolution.recipe.has_ai_steps()
            return await engine.execute(
                recipe,
                variables=variables,
                project_root=project_root,
                dry_run=dry_run,
                force=force,
                skip_prompts=skip_prompts,
                continue_on_error=continue_on_error,
                answers=answers,
                collect=needs_collect,
            )
        finally:
            await engine.close()

    try:
        report = asyncio.run(execute())
    except RecipeError as e:
        _fail(str(e))
    except Exception as e:
        logger.error(f"Recipe '{recipe}' crashed: {e}", exc_info=True)
        _fail(f"Unexpected error: {e}")

    if report.status == AWAITING_ANSWERS:
        text = write_manifest(report.manifest, manifest_path)
        if manifest_path:
            click.echo(f"AI prompt manifest written to {manifest_path}", err=True)
        else:
            click.echo(text, nl=False)
        count = len(report.manifest["entries"])
        click.echo(
            f"Recipe '{report.recipe}' is awaiting {count} AI answer(s); re-run with --answers <file>.",
            err=True,
        )
        raise SystemExit(EXIT_AWAITING_ANSWERS)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2, default=str))
    else:
        for line in render_report(report):
            click.echo(line)

    raise SystemExit(EXIT_OK if report.succeeded else EXIT_FAILED)


@main.command()
@click.argument("recipe")
@click.option("--cwd", type=click.Path(file_okay=False, path_type=Path), help="Project root.")
@click.pass_context
def validate(ctx, recipe, cwd):
    """Validate RECIPE without running it."""
    engine = _engine(ctx, interactive=False)
    project_root = (cwd or Path.cwd()).resolve()
    try:
        resolution = asyncio.run(engine.load(recipe, project_root))
    except RecipeError as e:
        _fail(str(e))

    result = engine.validate(resolution.recipe)
    for warning in result.warnings:
        click.echo(f"⚠ {warning}")
    if not result.is_valid:
        click.echo(f"✗ Recipe '{resolution.recipe.name}' is invalid:", err=True)
        for error in result.errors:
            click.echo(f"  - {error}", err=True)
        raise SystemExit(EXIT_FAILED)
    click.echo(f"✓ Recipe '{resolution.recipe.name}' is valid ({len(resolution.recipe.iter_steps())} steps)")


@main.command("list")
@click.argument("directory", required=False, type=click.Path(file_okay=False, path_type=Path))
def list_recipes(directory):
    """List recipes found under DIRECTORY (default: ./recipes, else the current directory)."""
    if directory is None:
        directory = Path("recipes") if Path("recipes").is_dir() else Path(".")
    if not directory.is_dir():
        _fail(f"Not a directory: {directory}")

    paths = sorted(p for p in directory.rglob("*") if p.is_file() and p.suffix in RECIPE_SUFFIXES)
    found = 0
    for path in paths:
        try:
            recipe = Recipe.from_yaml(path)
        except ValueError as e:
            logger.debug(f"Skipping {path}: {e}")
            continue
        if not recipe.name or not recipe.steps:
            continue
        found += 1
        description = f" - {recipe.description}" if recipe.description else ""
        version = f" ({recipe.version})" if recipe.version else ""
        click.echo(f"{recipe.name}{version}  {path}{description}")

    if not found:
        click.echo(f"No recipes found in {directory}")


@main.command()
@click.argument("recipe", required=False)
@click.option("--tools", "show_tools", is_flag=True, help="Show registered tools and registry health.")
@click.option("--cwd", type=click.Path(file_okay=False, path_type=Path), help="Project root.")
@click.pass_context
def info(ctx, recipe, show_tools, cwd):
    """Describe RECIPE: variables, settings and steps."""
    engine = _engine(ctx, interactive=False)

    if show_tools:
        summary = tool_health_summary(engine.registry)
        status = "healthy" if summary["healthy"] else "unhealthy"
        click.echo(f"Tools ({len(summary['tools'])}, registry {status}):")
        for tool in summary["tools"]:
            click.echo(f"  {tool['type']:<12} {tool['category']:<15} {tool['description']}")
        for issue in summary["issues"]:
            click.echo(f"  ⚠ {issue}")
        for recommendation in summary["recommendations"]:
            click.echo(f"  → {recommendation}")

    if recipe is None:
        if not show_tools:
            raise click.UsageError("RECIPE is required unless --tools is given")
        return

    project_root = (cwd or Path.cwd()).resolve()
    try:
        resolution = asyncio.run(engine.load(recipe, project_root))
    except RecipeError as e:
        _fail(str(e))

    r = resolution.recipe
    click.echo(f"Name:        {r.name}")
    if r.version:
        click.echo(f"Version:     {r.version}")
    if r.description:
        click.echo(f"Description: {r.description}")
    click.echo(f"Source:      {resolution.location} ({resolution.source})")

    if r.variables:
        click.echo("Variables:")
        for spec in r.variables.values():
            flags = "required" if spec.required else "optional"
            default = f", default={spec.default!r}" if spec.default is not None else ""
            click.echo(f"  {spec.name} ({spec.type}, {flags}{default})")

    settings = {k: v for k, v in vars(r.settings).items() if v is not None}
    click.echo("Settings:    " + yaml.safe_dump(settings, default_flow_style=True, sort_keys=False).strip())

    click.echo("Steps:")

    def show(steps, indent):
        for step in steps:
            deps = f" after {', '.join(step.depends_on)}" if step.depends_on else ""
            cond = f" when {step.when}" if step.when is not None else ""
            click.echo(f"{'  ' * indent}- {step.name} [{step.tool}]{deps}{cond}")
            show(step.children(), indent + 1)

    show(r.steps, 1)
    if r.has_ai_steps():
        click.echo("This recipe has AI steps: run once to collect prompts, then again with --answers.")


if __name__ == "__main__":
    main()
