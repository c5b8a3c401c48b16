"""Query tool: read a data file and export values into variables."""

import logging
from dataclasses import dataclass
from dataclasses import field
from typing import Any

from ..context import StepContext
from ..context import StepExecutionOptions
from ..context import StepResult
from ..context import now
from ..dataformats import detect_format
from ..dataformats import load_data
from ..errors import InvalidSyntaxError
from ..errors import ToolExecutionError
from ..expression_evaluator import ExpressionError
from ..expression_evaluator import evaluate_expression
from ..models import QueryStep
from ..models import snake_case
from ..variables import lookup_path
from ..variables import substitute_string
from .base import Tool
from .base import ToolValidationResult

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class QueryCheckResult:
    path: str
    exists: bool
    value: Any = None


@dataclass
class QueryExecutionResult:
    file: str
    format: str
    checks: list[QueryCheckResult] = field(default_factory=list)
    expression: str | None = None
    value: Any = None


def _check_option(check: dict[str, Any], *names: str) -> Any:
    normalized = {snake_case(str(k)): v for k, v in check.items()}
    for name in names:
        if normalized.get(name):
            return normalized[name]
    return None


class QueryTool(Tool):
    tool_type = "query"

    async def _on_validate(self, step: QueryStep, context: StepContext) -> ToolValidationResult:
        warnings = []
        if step.checks and step.expression:
            warnings.append("both 'checks' and 'expression' are set; both will be evaluated")
        for i, check in enumerate(step.checks):
            if not _check_option(check, "export", "export_exists", "exists_export"):
                warnings.append(f"checks[{i}] exports nothing; its result is discarded")
        if step.expression and not step.output:
            warnings.append("expression result is not stored; set 'output'")
        return ToolValidationResult(warnings=warnings, estimated_time=0.1)

    async def _on_execute(self, step: QueryStep, context: StepContext, options: StepExecutionOptions) -> StepResult:
        start_time = now()
        file_text = substitute_string(step.file, context.variables, strict=context.strict_variables)
        path = context.resolve_path(file_text)
        fmt = detect_format(path, step.format)
        if not path.is_file() and context.dry_walk:
            # An earlier step would have written it
            logger.info(f"[dry-run] Step '{step.name}': {file_text} does not exist yet, nothing to export")
            return self.completed(step, start_time, output={"file": file_text, "format": fmt, "exported": {}})
        if not path.is_file():
            raise ToolExecutionError(f"Step '{step.name}': file not found: {file_text}")

        data = load_data(path, fmt)
        result = QueryExecutionResult(file=file_text, format=fmt)
        exported: dict[str, Any] = {}

        for check in step.checks:
            value = lookup_path(data, str(check["path"]), _MISSING)
            exists = value is not _MISSING
            value = None if not exists else value
            result.checks.append(QueryCheckResult(path=str(check["path"]), exists=exists, value=value))

            export = _check_option(check, "export")
            if export:
                exported[export] = value
            exists_export = _check_option(check, "export_exists", "exists_export")
            if exists_export:
                exported[exists_export] = exists and value is not None and value is not False

        if step.expression:
            try:
                result.value = evaluate_expression(step.expression, {"data": data})
            except ExpressionError as e:
                raise InvalidSyntaxError(f"Step '{step.name}': expression failed: {e}") from e
            result.expression = step.expression
            if step.output:
                exported[step.output] = result.value

        context.variables.update(exported)
        logger.debug(f"Step '{step.name}': exported {', '.join(exported) or 'nothing'} from {file_text}")

        return self.completed(
            step,
            start_time,
            tool_result=result,
            output={"file": file_text, "format": fmt, "exported": exported, "value": result.value},
        )
