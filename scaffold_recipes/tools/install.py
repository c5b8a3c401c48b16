"""Install tool: add packages with the project's package manager."""

import logging
import shlex
from pathlib import Path

from ..context import StepContext
from ..context import StepExecutionOptions
from ..context import StepResult
from ..context import now
from ..errors import InvalidParameterError
from ..errors import ToolExecutionError
from ..models import InstallStep
from ..variables import substitute_string
from .base import Tool
from .base import ToolValidationResult
from .shell import run_command

logger = logging.getLogger(__name__)

# Lockfile -> package manager, checked in order
LOCKFILES = [
    ("uv.lock", "uv"),
    ("poetry.lock", "poetry"),
    ("pdm.lock", "pdm"),
    ("Pipfile.lock", "pipenv"),
    ("pnpm-lock.yaml", "pnpm"),
    ("yarn.lock", "yarn"),
    ("bun.lockb", "bun"),
    ("package-lock.json", "npm"),
    ("package.json", "npm"),
]

# Package manager -> (install args, extra args for dev dependencies)
INSTALL_COMMANDS = {
    "uv": (["uv", "add"], ["--dev"]),
    "poetry": (["poetry", "add"], ["--group", "dev"]),
    "pdm": (["pdm", "add"], ["--dev"]),
    "pipenv": (["pipenv", "install"], ["--dev"]),
    "pip": (["pip", "install"], []),
    "npm": (["npm", "install"], ["--save-dev"]),
    "yarn": (["yarn", "add"], ["--dev"]),
    "pnpm": (["pnpm", "add"], ["--save-dev"]),
    "bun": (["bun", "add"], ["--dev"]),
}


def detect_package_manager(project_root: Path) -> str:
    for lockfile, manager in LOCKFILES:
        if (project_root / lockfile).exists():
            return manager
    return "pip"


def install_command(manager: str, packages: list[str], dev: bool = False) -> list[str]:
    if manager not in INSTALL_COMMANDS:
        raise InvalidParameterError(
            f"Unknown package manager '{manager}'. Known: {', '.join(INSTALL_COMMANDS)}"
        )
    base, dev_args = INSTALL_COMMANDS[manager]
    return [*base, *(dev_args if dev else []), *packages]


class InstallTool(Tool):
    tool_type = "install"

    async def _on_validate(self, step: InstallStep, context: StepContext) -> ToolValidationResult:
        if step.package_manager and step.package_manager not in INSTALL_COMMANDS:
            return ToolValidationResult.from_errors(
                [f"unknown package manager '{step.package_manager}'"],
                suggestions=[f"Known package managers: {', '.join(INSTALL_COMMANDS)}"],
            )
        warnings = []
        if step.dev and (step.package_manager or detect_package_manager(context.project_root)) == "pip":
            warnings.append("pip has no dev dependency group; packages are installed normally")
        return ToolValidationResult(warnings=warnings, estimated_time=30.0)

    async def _on_execute(self, step: InstallStep, context: StepContext, options: StepExecutionOptions) -> StepResult:
        start_time = now()
        manager = step.package_manager or detect_package_manager(context.project_root)
        strict = context.strict_variables
        packages = [substitute_string(str(p), context.variables, strict=strict) for p in step.packages]
        argv = install_command(manager, packages, dev=step.dev)
        command = shlex.join(argv)

        output = {"package_manager": manager, "packages": packages, "command": command, "dev": step.dev}
        if context.dry_walk:
            logger.info(f"[dry-run] Step '{step.name}': would run: {command}")
            return self.completed(step, start_time, output={**output, "dry_run": True})

        logger.info(f"Installing {', '.join(packages)} with {manager}")
        result = await run_command(command, context.project_root)
        if result.exit_code != 0:
            message = f"Step '{step.name}': {manager} exited with code {result.exit_code}"
            if result.stderr.strip():
                message += f"\nstderr: {result.stderr.strip()}"
            if not step.optional:
                raise ToolExecutionError(message, exit_code=result.exit_code)
            logger.warning(f"{message} (optional install, continuing)")
            return self.completed(step, start_time, tool_result=result, output={**output, "installed": False})

        return self.completed(step, start_time, tool_result=result, output={**output, "installed": True})
