"""AI tool: collect prompts in pass one, apply answers in pass two."""

import logging

import click

from ..ai import ManifestEntry
from ..context import SKIPPED
from ..context import StepContext
from ..context import StepExecutionOptions
from ..context import StepResult
from ..context import make_result
from ..context import now
from ..errors import ConfigurationError
from ..errors import MissingAnswerError
from ..errors import ToolExecutionError
from ..fileops import inject_text
from ..fileops import write_text
from ..models import AiStep
from ..variables import substitute_string
from .base import Tool
from .base import ToolValidationResult

logger = logging.getLogger(__name__)


class AiTool(Tool):
    tool_type = "ai"

    async def _on_validate(self, step: AiStep, context: StepContext) -> ToolValidationResult:
        warnings = []
        if not context.collect_mode and context.answers is not None and step.answer_key not in context.answers:
            if step.required:
                warnings.append(f"no answer for key '{step.answer_key}'")
        return ToolValidationResult(warnings=warnings, estimated_time=0.0)

    def _collect(self, step: AiStep, context: StepContext) -> ManifestEntry:
        # Unresolved references stay visible in the manifest rather than failing the walk
        def render(text: str) -> str:
            return substitute_string(text, context.variables, strict=False)

        return ManifestEntry(
            key=step.answer_key,
            prompt=render(step.prompt),
            step=step.name,
            context=[render(item) for item in step.context],
            constraints=[render(item) for item in step.constraints],
            system=render(step.system) if step.system else None,
            examples=[render(item) for item in step.examples],
            output=step.output.describe(),
            required=step.required,
        )

    async def _on_execute(self, step: AiStep, context: StepContext, options: StepExecutionOptions) -> StepResult:
        start_time = now()
        key = step.answer_key

        if context.collect_mode:
            if context.collector is None:
                raise ConfigurationError(f"Step '{step.name}': collect mode requires an AI collector")
            context.collector.add(self._collect(step, context))
            logger.debug(f"Step '{step.name}': collected prompt '{key}'")
            return self.completed(step, start_time, output={"key": key, "collected": True})

        answers = context.answers or {}
        if key not in answers:
            if step.required:
                raise MissingAnswerError(key, step.name)
            logger.info(f"Step '{step.name}': no answer for optional key '{key}', skipping")
            return make_result(step.name, self.tool_type, SKIPPED, start_time, output={"key": key, "answered": False})

        return self._deliver(step, context, answers[key], start_time)

    def _deliver(self, step: AiStep, context: StepContext, text: str, start_time) -> StepResult:
        output = step.output
        files_created = []
        files_modified = []
        summary = {"key": step.answer_key, "answered": True, "target": output.type}

        if output.type == "variable":
            context.variables[output.variable] = text
            summary["variable"] = output.variable

        elif output.type == "file":
            path = context.resolve_path(substitute_string(output.to, context.variables))
            relative = context.relative(path)
            summary["file"] = relative
            if not context.dry_walk:
                existed = path.exists()
                write_text(path, text)
                (files_modified if existed else files_created).append(relative)

        elif output.type == "inject":
            path = context.resolve_path(substitute_string(output.inject_into, context.variables))
            relative = context.relative(path)
            summary["file"] = relative
            if not path.exists():
                raise ToolExecutionError(f"Step '{step.name}': cannot inject into non-existent file: {relative}")
            updated = inject_text(
                path.read_text(encoding="utf-8"),
                text,
                after=output.after,
                before=output.before,
                at=output.at,
            )
            if not context.dry_walk:
                write_text(path, updated)
                files_modified.append(relative)

        else:
            click.echo(text)

        summary["dry_run"] = context.dry_walk
        return self.completed(
            step,
            start_time,
            tool_result=text,
            files_created=files_created,
            files_modified=files_modified,
            output=summary,
        )
