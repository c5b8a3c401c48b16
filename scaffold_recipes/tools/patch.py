"""Patch tool: deep-merge values into JSON, YAML or TOML files."""

import logging

from ..context import StepContext
from ..context import StepExecutionOptions
from ..context import StepResult
from ..context import now
from ..dataformats import deep_merge
from ..dataformats import detect_format
from ..dataformats import dump_data
from ..dataformats import load_data
from ..errors import InvalidParameterError
from ..errors import ToolExecutionError
from ..fileops import write_text
from ..models import PatchStep
from ..variables import substitute_recursive
from ..variables import substitute_string
from .base import Tool
from .base import ToolValidationResult

logger = logging.getLogger(__name__)


class PatchTool(Tool):
    tool_type = "patch"

    async def _on_validate(self, step: PatchStep, context: StepContext) -> ToolValidationResult:
        path = context.resolve_path(substitute_string(step.file, context.variables, strict=False))
        if not path.exists() and not step.create_if_missing:
            return ToolValidationResult.from_errors([f"{step.file} does not exist and create_if_missing is false"])
        return ToolValidationResult(estimated_time=0.1)

    async def _on_execute(self, step: PatchStep, context: StepContext, options: StepExecutionOptions) -> StepResult:
        start_time = now()
        file_text = substitute_string(step.file, context.variables, strict=context.strict_variables)
        path = context.resolve_path(file_text)
        fmt = detect_format(path, step.format)
        if fmt == "env":
            raise InvalidParameterError(f"Step '{step.name}': .env files cannot be patched")

        existed = path.exists()
        if existed:
            current = load_data(path, fmt)
            if not isinstance(current, dict):
                raise ToolExecutionError(f"Step '{step.name}': {file_text} does not contain a mapping")
        elif step.create_if_missing:
            current = {}
        else:
            raise ToolExecutionError(f"Step '{step.name}': file not found: {file_text}")

        updates = substitute_recursive(step.merge, context.variables, strict=context.strict_variables)
        merged = deep_merge(current, updates)
        changed = merged != current or not existed
        relative = context.relative(path)

        if context.dry_walk:
            logger.info(f"[dry-run] Step '{step.name}': would patch {relative}")
        elif changed:
            write_text(path, dump_data(merged, fmt))

        wrote = changed and not context.dry_walk
        return self.completed(
            step,
            start_time,
            tool_result=merged,
            files_created=[relative] if wrote and not existed else [],
            files_modified=[relative] if wrote and existed else [],
            output={"file": relative, "format": fmt, "changed": changed, "dry_run": context.dry_walk},
        )
