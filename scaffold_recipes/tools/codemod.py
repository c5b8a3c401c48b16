"""Codemod tool: text transforms over existing source files.

Built-in codemods:

- ``add-import``: insert an import line (``import``, or ``module`` + ``names``)
  after the last top-level import, unless it is already present
- ``replace-text``: ``find`` / ``replace``, optionally ``regex`` and
  ``global`` (default true)
- ``append-text``: append ``text`` unless the file already contains it

Custom transforms are registered with ``@codemod("name")`` and receive
``(content, parameters, path)``, returning the new content.
"""

import glob
import logging
import re
import shutil
from pathlib import Path
from typing import Any
from typing import Callable

from ..context import StepContext
from ..context import StepExecutionOptions
from ..context import StepResult
from ..context import now
from ..errors import InvalidParameterError
from ..errors import ToolExecutionError
from ..fileops import write_text
from ..models import CodemodStep
from ..variables import substitute_recursive
from ..variables import substitute_string
from .base import Tool
from .base import ToolResource
from .base import ToolValidationResult

logger = logging.getLogger(__name__)

Transform = Callable[[str, dict[str, Any], Path], str]

_IMPORT_LINE = re.compile(r"^(import\s+\S|from\s+\S+\s+import\s)")


def add_import(content: str, params: dict[str, Any], path: Path) -> str:
    line = params.get("import")
    if not line:
        module = params.get("module")
        if not module:
            raise InvalidParameterError("add-import requires 'import' or 'module'")
        names = params.get("names")
        if isinstance(names, str):
            names = [names]
        line = f"from {module} import {', '.join(names)}" if names else f"import {module}"
    line = str(line).strip()

    lines = content.splitlines(keepends=True)
    if any(existing.strip() == line for existing in lines):
        return content

    last_import = -1
    for i, existing in enumerate(lines):
        if _IMPORT_LINE.match(existing):
            last_import = i
    if last_import == -1:
        return line + "\n" + content
    lines.insert(last_import + 1, line + "\n")
    return "".join(lines)


def replace_text(content: str, params: dict[str, Any], path: Path) -> str:
    find = params.get("find")
    if not find:
        raise InvalidParameterError("replace-text requires 'find'")
    replacement = str(params.get("replace", ""))
    count = 0 if params.get("global", True) else 1
    if params.get("regex"):
        try:
            return re.sub(find, replacement, content, count=count)
        except re.error as e:
            raise InvalidParameterError(f"replace-text: invalid regex '{find}': {e}") from e
    return content.replace(find, replacement, -1 if count == 0 else 1)


def append_text(content: str, params: dict[str, Any], path: Path) -> str:
    text = params.get("text")
    if text is None:
        raise InvalidParameterError("append-text requires 'text'")
    text = str(text)
    if text.strip() and text.strip() in content:
        return content
    if content and not content.endswith("\n"):
        content += "\n"
    return content + text if text.endswith("\n") else content + text + "\n"


BUILTIN_CODEMODS: dict[str, Transform] = {
    "add-import": add_import,
    "replace-text": replace_text,
    "append-text": append_text,
}

custom_codemods: dict[str, Transform] = {}


def codemod(name: str) -> Callable[[Transform], Transform]:
    """Register a custom text transform."""

    def decorator(func: Transform) -> Transform:
        custom_codemods[name] = func
        return func

    return decorator


def get_codemod(name: str) -> Transform | None:
    return custom_codemods.get(name) or BUILTIN_CODEMODS.get(name)


class CodemodTool(Tool):
    """Applies a codemod to every file matched by the step's globs."""

    tool_type = "codemod"

    def _match_files(self, step: CodemodStep, context: StepContext) -> list[Path]:
        matched: list[Path] = []
        for pattern in step.files:
            pattern = substitute_string(pattern, context.variables, strict=context.strict_variables)
            full = str(context.resolve_path(pattern))
            if glob.has_magic(pattern):
                hits = sorted(Path(p) for p in glob.glob(full, recursive=True) if Path(p).is_file())
                if not hits:
                    logger.warning(f"Step '{step.name}': no files match '{pattern}'")
                matched.extend(hits)
            else:
                path = Path(full)
                if not path.is_file() and context.dry_walk:
                    logger.info(f"[dry-run] Step '{step.name}': {pattern} does not exist yet")
                    continue
                if not path.is_file():
                    raise ToolExecutionError(f"Step '{step.name}': file not found: {pattern}")
                matched.append(path)
        # Keep the first occurrence of each file
        return list(dict.fromkeys(matched))

    async def _on_validate(self, step: CodemodStep, context: StepContext) -> ToolValidationResult:
        if get_codemod(step.codemod) is None:
            known = ", ".join(sorted(set(BUILTIN_CODEMODS) | set(custom_codemods)))
            return ToolValidationResult.from_errors(
                [f"Unknown codemod '{step.codemod}'"], suggestions=[f"Available codemods: {known}"]
            )
        return ToolValidationResult(estimated_time=0.2)

    def _backup(self, path: Path) -> None:
        backup = path.with_name(path.name + ".bak")
        shutil.copy2(path, backup)
        self.register_resource(
            ToolResource(
                id=f"backup:{backup}",
                type="file",
                cleanup=lambda: backup.unlink(missing_ok=True),
                metadata={"original": str(path)},
            )
        )

    async def _on_execute(self, step: CodemodStep, context: StepContext, options: StepExecutionOptions) -> StepResult:
        start_time = now()
        transform = get_codemod(step.codemod)
        if transform is None:
            raise InvalidParameterError(f"Step '{step.name}': unknown codemod '{step.codemod}'")
        params = substitute_recursive(step.parameters, context.variables, strict=context.strict_variables)

        modified = []
        unchanged = []
        for path in self._match_files(step, context):
            original = path.read_text(encoding="utf-8")
            updated = transform(original, params, path)
            relative = context.relative(path)
            if updated == original:
                unchanged.append(relative)
                continue
            modified.append(relative)
            if context.dry_walk:
                continue
            if step.backup:
                self._backup(path)
            write_text(path, updated)

        logger.debug(f"Step '{step.name}': {step.codemod} modified {len(modified)} file(s)")
        return self.completed(
            step,
            start_time,
            files_modified=[] if context.dry_walk else modified,
            output={
                "codemod": step.codemod,
                "modified": modified,
                "unchanged": unchanged,
                "dry_run": context.dry_walk,
            },
        )
