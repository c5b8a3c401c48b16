"""Reading and writing structured data files (JSON, YAML, TOML, .env)."""

import json
import tomllib
from io import StringIO
from pathlib import Path
from typing import Any

import tomli_w
import yaml
from dotenv import dotenv_values

from .errors import InvalidParameterError
from .errors import InvalidSyntaxError

_EXTENSIONS = {
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
    ".env": "env",
}


def detect_format(path: Path, explicit: str | None = None) -> str:
    """Format from ``explicit`` or the file name (``.env.local`` counts as env)."""
    if explicit:
        return explicit
    name = path.name.lower()
    if name == ".env" or name.startswith(".env."):
        return "env"
    fmt = _EXTENSIONS.get(path.suffix.lower())
    if fmt is None:
        raise InvalidParameterError(f"Cannot infer data format of {path}; set 'format'")
    return fmt


def parse_data(text: str, fmt: str, source: str = "<string>") -> Any:
    try:
        if fmt == "json":
            return json.loads(text) if text.strip() else {}
        if fmt == "yaml":
            return yaml.safe_load(text) or {}
        if fmt == "toml":
            return tomllib.loads(text)
        if fmt == "env":
            # Values are parsed only, never exported to os.environ
            return dict(dotenv_values(stream=StringIO(text)))
    except (json.JSONDecodeError, yaml.YAMLError, tomllib.TOMLDecodeError) as e:
        raise InvalidSyntaxError(f"Failed to parse {source} as {fmt}: {e}") from e
    raise InvalidParameterError(f"Unsupported data format '{fmt}'")


def load_data(path: Path, fmt: str | None = None) -> Any:
    fmt = detect_format(path, fmt)
    return parse_data(path.read_text(encoding="utf-8"), fmt, source=str(path))


def dump_data(data: Any, fmt: str) -> str:
    if fmt == "json":
        return json.dumps(data, indent=2) + "\n"
    if fmt == "yaml":
        return yaml.safe_dump(data, sort_keys=False, default_flow_style=False)
    if fmt == "toml":
        return tomli_w.dumps(data)
    raise InvalidParameterError(f"Cannot write data format '{fmt}'")


def deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Merge ``overlay`` into a copy of ``base``; nested dicts merge, everything else replaces."""
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
