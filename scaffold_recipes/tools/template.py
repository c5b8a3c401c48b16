"""Template rendering tool.

Templates are jinja2 files with optional YAML front matter:

    ---
    to: src/{{ name }}.py
    unless_exists: true
    ---
    print("{{ title }}")

Front matter keys: ``to`` (target path), ``unless_exists`` (leave an existing
target alone), ``skip_if`` (condition), ``force`` (overwrite), ``inject``
with ``after`` / ``before`` / ``at`` (insert into an existing file). A step
may point at a single file or a directory of templates.
"""

import fnmatch
import logging
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from typing import Any

import yaml
from jinja2 import DebugUndefined
from jinja2 import Environment
from jinja2 import FileSystemLoader
from jinja2 import StrictUndefined
from jinja2 import TemplateError

from ..context import SKIPPED
from ..context import StepContext
from ..context import StepExecutionOptions
from ..context import StepResult
from ..context import make_result
from ..context import now
from ..errors import InvalidSyntaxError
from ..errors import TemplateNotFoundError
from ..errors import ToolExecutionError
from ..expression_evaluator import ExpressionError
from ..fileops import inject_text
from ..fileops import write_text
from ..models import TemplateStep
from ..variables import substitute_recursive
from .base import Tool
from .base import ToolValidationResult

logger = logging.getLogger(__name__)

TEMPLATE_SUFFIXES = (".jinja", ".jinja2", ".j2", ".t")
FRONT_MATTER_DELIMITER = "---"


@dataclass
class RenderedFile:
    source: Path
    target: Path | None
    content: str
    attributes: dict[str, Any] = field(default_factory=dict)


@dataclass
class TemplateExecutionResult:
    template: str
    template_path: str
    files: dict[str, str] = field(default_factory=dict)  # target -> added|forced|injected|identical|skipped


def split_front_matter(text: str) -> tuple[str, str]:
    """Split a template into (front matter, body). Front matter may be empty."""
    lines = text.splitlines(keepends=True)
    if not lines or lines[0].strip() != FRONT_MATTER_DELIMITER:
        return "", text
    for i in range(1, len(lines)):
        if lines[i].strip() == FRONT_MATTER_DELIMITER:
            return "".join(lines[1:i]), "".join(lines[i + 1 :])
    return "", text


class TemplateTool(Tool):
    """Renders templates into files under the project root."""

    tool_type = "template"

    def resolve_template(self, template: str, context: StepContext) -> Path:
        """Locate a template file or directory.

        Search order: relative to the recipe, the recipe's ``templates/``
        directory, then the project root.

        Raises:
            TemplateNotFoundError: If no candidate exists
        """
        candidate = Path(template).expanduser()
        if candidate.is_absolute():
            if candidate.exists():
                return candidate
            raise TemplateNotFoundError(f"Template not found: {template}")

        search = [
            context.recipe_dir / candidate,
            context.recipe_dir / "templates" / candidate,
            context.project_root / candidate,
        ]
        for path in search:
            if path.exists():
                return path
        searched = ", ".join(str(p) for p in search)
        raise TemplateNotFoundError(f"Template not found: {template} (searched {searched})")

    async def _on_validate(self, step: TemplateStep, context: StepContext) -> ToolValidationResult:
        errors = []
        warnings = []
        try:
            path = self.resolve_template(step.template, context)
        except TemplateNotFoundError as e:
            errors.append(str(e))
        else:
            if path.is_dir() and step.to:
                errors.append("'to' can only be used with a single template file")
            if path.is_dir() and not any(p.is_file() for p in path.rglob("*")):
                warnings.append(f"Template directory is empty: {path}")
        return ToolValidationResult.from_errors(errors, warnings=warnings, estimated_time=0.1)

    def _template_files(self, root: Path, exclude: list[str]) -> list[Path]:
        if root.is_file():
            return [root]
        files = []
        for path in sorted(root.rglob("*")):
            if not path.is_file():
                continue
            relative = path.relative_to(root).as_posix()
            if any(fnmatch.fnmatch(relative, pattern) for pattern in exclude):
                continue
            files.append(path)
        return files

    def _render_file(
        self,
        env: Environment,
        source: Path,
        root: Path,
        step: TemplateStep,
        variables: dict[str, Any],
        context: StepContext,
    ) -> RenderedFile:
        text = source.read_text(encoding="utf-8")
        front_matter, body = split_front_matter(text)
        try:
            attributes: dict[str, Any] = {}
            if front_matter.strip():
                # Front matter is itself a template so targets can use variables
                rendered_front = env.from_string(front_matter).render(**variables)
                attributes = yaml.safe_load(rendered_front) or {}
                if not isinstance(attributes, dict):
                    raise InvalidSyntaxError(f"Front matter in {source} must be a mapping")
            content = env.from_string(body).render(**variables)
        except TemplateError as e:
            raise InvalidSyntaxError(f"Failed to render template {source}: {e}") from e
        except yaml.YAMLError as e:
            raise InvalidSyntaxError(f"Invalid front matter in {source}: {e}") from e

        target_text = step.to or attributes.get("to")
        if step.to:
            target_text = env.from_string(step.to).render(**variables)
        if not target_text and root.is_dir():
            relative = source.relative_to(root).as_posix()
            for suffix in TEMPLATE_SUFFIXES:
                if relative.endswith(suffix):
                    relative = relative[: -len(suffix)]
                    break
            target_text = relative
        target = context.resolve_path(str(target_text)) if target_text else None
        return RenderedFile(source=source, target=target, content=content, attributes=attributes)

    def _should_skip(self, rendered: RenderedFile, step: TemplateStep, context: StepContext) -> str | None:
        skip_if = rendered.attributes.get("skip_if")
        if skip_if not in (None, False, "", "false"):
            try:
                if context.evaluate_condition(skip_if, context.condition_scope()):
                    return "skip_if condition evaluated to true"
            except ExpressionError as e:
                raise InvalidSyntaxError(f"Invalid skip_if in {rendered.source}: {e}") from e
        unless_exists = step.unless_exists or bool(rendered.attributes.get("unless_exists"))
        if unless_exists and rendered.target is not None and rendered.target.exists():
            return "target already exists"
        return None

    def _write(self, rendered: RenderedFile, step: TemplateStep, context: StepContext) -> str:
        target = rendered.target
        attributes = rendered.attributes

        if attributes.get("inject"):
            if not target.exists():
                raise ToolExecutionError(f"Cannot inject into non-existent file: {target}")
            existing = target.read_text(encoding="utf-8")
            if rendered.content.strip() and rendered.content.strip() in existing:
                return "identical"
            updated = inject_text(
                existing,
                rendered.content.rstrip("\n"),
                after=attributes.get("after"),
                before=attributes.get("before"),
                at=attributes.get("at") or ("start" if attributes.get("prepend") else None),
            )
            write_text(target, updated)
            return "injected"

        force = step.force or context.force or bool(attributes.get("force"))
        if target.exists():
            if target.read_text(encoding="utf-8") == rendered.content:
                return "identical"
            if not force:
                raise ToolExecutionError(
                    f"Step '{step.name}': {context.relative(target)} already exists "
                    "(set force: true to overwrite or unless_exists: true to keep it)"
                )
            write_text(target, rendered.content)
            return "forced"

        write_text(target, rendered.content)
        return "added"

    async def _on_execute(self, step: TemplateStep, context: StepContext, options: StepExecutionOptions) -> StepResult:
        start_time = now()
        root = self.resolve_template(step.template, context)
        loader_root = root if root.is_dir() else root.parent
        env = Environment(
            loader=FileSystemLoader(str(loader_root)),
            # AI answers are unknown during a collect pass; leave their references in place
            undefined=StrictUndefined if context.strict_variables else DebugUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )
        overrides = substitute_recursive(step.variables, context.variables, strict=context.strict_variables)
        variables = {**context.variables, **overrides}
        variables.setdefault("step", {"name": step.name})

        rendered_files = [
            self._render_file(env, source, root, step, variables, context)
            for source in self._template_files(root, step.exclude)
        ]

        result = TemplateExecutionResult(template=step.template, template_path=str(root))
        files_created = []
        files_modified = []
        skipped = 0

        for rendered in rendered_files:
            if rendered.target is None:
                raise ToolExecutionError(
                    f"Step '{step.name}': template {rendered.source.name} has no 'to' target"
                )
            relative = context.relative(rendered.target)
            reason = self._should_skip(rendered, step, context)
            if reason:
                logger.debug(f"Step '{step.name}': skipping {relative}: {reason}")
                result.files[relative] = "skipped"
                skipped += 1
                continue
            if context.dry_walk:
                result.files[relative] = "would-write"
                continue
            status = self._write(rendered, step, context)
            result.files[relative] = status
            if status == "added":
                files_created.append(relative)
            elif status in ("forced", "injected"):
                files_modified.append(relative)

        output = {"files": dict(result.files), "dry_run": context.dry_walk}
        if rendered_files and skipped == len(rendered_files):
            return make_result(step.name, self.tool_type, SKIPPED, start_time, tool_result=result, output=output)

        return self.completed(
            step,
            start_time,
            tool_result=result,
            files_created=files_created,
            files_modified=files_modified,
            output=output,
        )
