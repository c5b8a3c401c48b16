"""Shell command tool."""

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from ..context import StepContext
from ..context import StepExecutionOptions
from ..context import StepResult
from ..context import now
from ..errors import InvalidParameterError
from ..errors import ToolExecutionError
from ..models import ShellStep
from ..variables import substitute_string
from .base import Tool
from .base import ToolValidationResult

logger = logging.getLogger(__name__)


@dataclass
class ShellResult:
    """Result of a shell command execution."""

    command: str
    stdout: str
    stderr: str
    exit_code: int
    cwd: str


async def run_command(
    command: str,
    cwd: Path,
    env: dict[str, str] | None = None,
) -> ShellResult:
    """Run a shell command and capture its output.

    The subprocess is killed if the awaiting task is cancelled or times out.
    """
    full_env = os.environ.copy()
    if env:
        full_env.update(env)

    try:
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd),
            env=full_env,
        )
    except OSError as e:
        raise ToolExecutionError(f"Failed to execute command: {e}") from e

    try:
        stdout_bytes, stderr_bytes = await process.communicate()
    except asyncio.CancelledError:
        # Kill the process on timeout or cancellation
        process.kill()
        await process.wait()
        raise

    return ShellResult(
        command=command,
        stdout=stdout_bytes.decode("utf-8", errors="replace"),
        stderr=stderr_bytes.decode("utf-8", errors="replace"),
        exit_code=process.returncode or 0,
        cwd=str(cwd),
    )


class ShellTool(Tool):
    """Runs a shell command directly in the project (or ``cwd``)."""

    tool_type = "shell"

    async def _on_validate(self, step: ShellStep, context: StepContext) -> ToolValidationResult:
        warnings = []
        if step.output and step.output in context.variables:
            warnings.append(f"output variable '{step.output}' will be overwritten")
        return ToolValidationResult(warnings=warnings, estimated_time=1.0)

    def _resolve_cwd(self, step: ShellStep, context: StepContext) -> Path:
        if not step.cwd:
            return context.project_root
        cwd = context.resolve_path(substitute_string(step.cwd, context.variables))
        if not cwd.exists():
            raise InvalidParameterError(f"Step '{step.name}': cwd does not exist: {cwd}")
        if not cwd.is_dir():
            raise InvalidParameterError(f"Step '{step.name}': cwd is not a directory: {cwd}")
        return cwd

    async def _on_execute(self, step: ShellStep, context: StepContext, options: StepExecutionOptions) -> StepResult:
        start_time = now()
        command = substitute_string(step.command, context.variables, strict=context.strict_variables)

        if context.dry_walk:
            logger.info(f"[dry-run] Step '{step.name}': would run: {command}")
            return self.completed(step, start_time, output={"command": command, "dry_run": True})

        env = {key: substitute_string(str(value), context.variables) for key, value in step.env.items()}
        cwd = self._resolve_cwd(step, context)

        logger.debug(f"Step '{step.name}': running {command!r} in {cwd}")
        result = await run_command(command, cwd, env)

        if step.output_exit_code:
            context.variables[step.output_exit_code] = result.exit_code

        if result.exit_code != 0:
            error_msg = f"Step '{step.name}': command failed with exit code {result.exit_code}"
            if result.stderr.strip():
                error_msg += f"\nstderr: {result.stderr.strip()}"
            raise ToolExecutionError(error_msg, exit_code=result.exit_code)

        if step.output:
            context.variables[step.output] = result.stdout.strip()

        return self.completed(
            step,
            start_time,
            tool_result=result,
            output={"stdout": result.stdout, "stderr": result.stderr, "exit_code": result.exit_code},
        )
