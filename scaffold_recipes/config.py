"""Engine configuration.

Loaded from YAML (``--config``, ``$SCAFFOLD_CONFIG`` or ``scaffold.config.yml``
in the project root), then overridden by environment variables:

    SCAFFOLD_MAX_PARALLEL   max concurrent steps
    SCAFFOLD_TIMEOUT        default per-step timeout in seconds
    SCAFFOLD_LOG_LEVEL      logging level name
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from .context import StepExecutionOptions
from .errors import ConfigurationError
from .models import snake_case

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "scaffold.config.yml"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class EngineConfig:
    """Settings for the engine, registry and resolver."""

    max_parallel: int = 4
    timeout: float | None = None  # Default per-step timeout, seconds
    retries: int = 0
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    registry_ttl: float = 30 * 60
    registry_cleanup_interval: float = 10 * 60
    registry_max_cache_size: int = 100
    recipe_cache_ttl: float = 5 * 60
    http_timeout: float = 30.0
    max_depth: int = 10
    packages_dirs: list[Path] = field(default_factory=list)
    answers_path: Path | None = None
    log_level: str = "WARNING"
    source_path: Path | None = None

    def validate(self) -> list[str]:
        errors = []
        if not isinstance(self.max_parallel, int) or self.max_parallel < 1:
            errors.append(f"max_parallel must be a positive integer, got {self.max_parallel}")
        if self.timeout is not None and (not isinstance(self.timeout, (int, float)) or self.timeout <= 0):
            errors.append(f"timeout must be a positive number of seconds, got {self.timeout}")
        if not isinstance(self.retries, int) or self.retries < 0:
            errors.append(f"retries must be a non-negative integer, got {self.retries}")
        if self.retry_base_delay < 0 or self.retry_max_delay < self.retry_base_delay:
            errors.append("retry delays must satisfy 0 <= retry_base_delay <= retry_max_delay")
        for name in ("registry_ttl", "registry_cleanup_interval", "recipe_cache_ttl", "http_timeout"):
            if getattr(self, name) <= 0:
                errors.append(f"{name} must be positive")
        if not isinstance(self.registry_max_cache_size, int) or self.registry_max_cache_size < 1:
            errors.append("registry_max_cache_size must be a positive integer")
        if not isinstance(self.max_depth, int) or self.max_depth < 1:
            errors.append("max_depth must be a positive integer")
        if str(self.log_level).upper() not in LOG_LEVELS:
            errors.append(f"log_level must be one of {', '.join(LOG_LEVELS)}, got '{self.log_level}'")
        return errors

    def execution_options(self, continue_on_error: bool = False) -> StepExecutionOptions:
        return StepExecutionOptions(
            retries=self.retries,
            timeout=self.timeout,
            continue_on_error=continue_on_error,
            max_parallel=self.max_parallel,
            retry_base_delay=self.retry_base_delay,
            retry_max_delay=self.retry_max_delay,
        )


def _read_file(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return data


def _env_number(environ: Mapping[str, str], name: str, kind: type) -> Any:
    raw = environ.get(name)
    if raw is None or raw == "":
        return None
    try:
        return kind(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a {kind.__name__}, got '{raw}'") from None


def load_config(
    path: Path | None = None,
    project_root: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> EngineConfig:
    """
    Load engine configuration.

    Args:
        path: Explicit config file (must exist)
        project_root: Directory searched for scaffold.config.yml
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated EngineConfig

    Raises:
        ConfigurationError: If the file is missing, malformed or invalid
    """
    environ = os.environ if environ is None else environ

    config_path = path or environ.get("SCAFFOLD_CONFIG")
    if config_path:
        config_path = Path(config_path).expanduser()
        if not config_path.is_file():
            raise ConfigurationError(f"Config file not found: {config_path}")
    else:
        candidate = Path(project_root or Path.cwd()) / CONFIG_FILENAME
        config_path = candidate if candidate.is_file() else None

    data: dict[str, Any] = {}
    if config_path is not None:
        data = {snake_case(str(k)): v for k, v in _read_file(config_path).items()}
        logger.debug(f"Loaded config from {config_path}")

    known = {f.name for f in fields(EngineConfig)} - {"source_path"}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"Unknown config key(s) in {config_path}: {', '.join(unknown)}")

    base_dir = config_path.parent if config_path is not None else Path.cwd()
    if "packages_dirs" in data:
        dirs = data["packages_dirs"]
        if isinstance(dirs, str):
            dirs = [dirs]
        data["packages_dirs"] = [base_dir / Path(d).expanduser() for d in dirs or []]
    if data.get("answers_path"):
        data["answers_path"] = base_dir / Path(data["answers_path"]).expanduser()

    config = EngineConfig(source_path=config_path, **data)

    max_parallel = _env_number(environ, "SCAFFOLD_MAX_PARALLEL", int)
    if max_parallel is not None:
        config.max_parallel = max_parallel
    timeout = _env_number(environ, "SCAFFOLD_TIMEOUT", float)
    if timeout is not None:
        config.timeout = timeout
    if environ.get("SCAFFOLD_LOG_LEVEL"):
        config.log_level = environ["SCAFFOLD_LOG_LEVEL"]
    config.log_level = str(config.log_level).upper()

    errors = config.validate()
    if errors:
        raise ConfigurationError("Invalid configuration:\n" + "\n".join(f"  - {e}" for e in errors))
    return config
