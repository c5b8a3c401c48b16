"""Ensure-dirs tool: create directories that do not exist yet."""

import logging

from ..context import StepContext
from ..context import StepExecutionOptions
from ..context import StepResult
from ..context import now
from ..errors import ToolExecutionError
from ..models import EnsureDirsStep
from ..variables import substitute_string
from .base import Tool

logger = logging.getLogger(__name__)


class EnsureDirsTool(Tool):
    tool_type = "ensure-dirs"

    async def _on_execute(self, step: EnsureDirsStep, context: StepContext, options: StepExecutionOptions) -> StepResult:
        start_time = now()
        created = []
        existing = []
        for raw in step.paths:
            raw = substitute_string(str(raw), context.variables, strict=context.strict_variables)
            path = context.resolve_path(raw)
            relative = context.relative(path)
            if path.is_dir():
                existing.append(relative)
                continue
            if path.exists():
                raise ToolExecutionError(f"Step '{step.name}': {relative} exists and is not a directory")
            if not context.dry_walk:
                path.mkdir(parents=True, exist_ok=True)
            created.append(relative)

        logger.debug(f"Step '{step.name}': created {len(created)}, existing {len(existing)}")
        return self.completed(
            step,
            start_time,
            files_created=[] if context.dry_walk else created,
            output={"created": created, "existing": existing, "dry_run": context.dry_walk},
        )
