"""Two-pass AI protocol: prompt manifests and answer documents.

Pass one (collect) walks the recipe without writing; every AI step adds a
``ManifestEntry`` to the run's ``AiCollector``. The caller hands the manifest
to an assistant and gets back an answers document, a flat JSON object
mapping each entry key to its text. Pass two (apply) runs the recipe again
with those answers and delivers each one to its step's output target.

Manifest document:

    {
      "recipe": "demo",
      "entries": [
        {"key": "summary", "prompt": "...", "context": [...], "constraints": [...],
         "step": "write-summary", "output": {"type": "file", "to": "SUMMARY.md"}}
      ]
    }
"""

import json
import logging
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from typing import Any

from .errors import ConfigurationError
from .errors import InvalidSyntaxError

logger = logging.getLogger(__name__)


@dataclass
class ManifestEntry:
    """One prompt awaiting an answer."""

    key: str
    prompt: str
    step: str
    context: list[str] = field(default_factory=list)
    constraints: list[str] = field(default_factory=list)
    system: str | None = None
    examples: list[str] = field(default_factory=list)
    output: dict[str, Any] = field(default_factory=dict)
    required: bool = True

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "key": self.key,
            "prompt": self.prompt,
            "context": list(self.context),
            "constraints": list(self.constraints),
            "step": self.step,
            "output": dict(self.output),
            "required": self.required,
        }
        if self.system:
            data["system"] = self.system
        if self.examples:
            data["examples"] = list(self.examples)
        return data


class AiCollector:
    """Accumulates manifest entries during a collect pass.

    Shared by a recipe and its sub-recipes so one manifest covers the whole run.
    """

    def __init__(self):
        self._entries: dict[str, ManifestEntry] = {}

    def add(self, entry: ManifestEntry) -> None:
        existing = self._entries.get(entry.key)
        if existing is not None and existing.prompt != entry.prompt:
            raise ConfigurationError(
                f"AI key '{entry.key}' is used by steps '{existing.step}' and '{entry.step}' with different prompts"
            )
        self._entries[entry.key] = entry

    @property
    def entries(self) -> list[ManifestEntry]:
        return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> list[str]:
        return list(self._entries)

    def manifest(self, recipe_name: str) -> dict[str, Any]:
        return {"recipe": recipe_name, "entries": [entry.to_dict() for entry in self._entries.values()]}


def parse_answers(data: Any, source: str = "answers") -> dict[str, str]:
    """Validate a decoded answers document (a flat object of strings)."""
    if not isinstance(data, dict):
        raise ConfigurationError(f"{source} must be a JSON object mapping keys to text")
    bad = sorted(str(k) for k, v in data.items() if not isinstance(v, str))
    if bad:
        raise ConfigurationError(f"{source}: answers must be strings (check {', '.join(bad)})")
    return dict(data)


def load_answers(path: Path) -> dict[str, str]:
    """Read an answers JSON file.

    Raises:
        ConfigurationError: If the file is missing or not a flat object of strings
        InvalidSyntaxError: If the file is not valid JSON
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Answers file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise InvalidSyntaxError(f"Answers file {path} is not valid JSON: {e}") from e
    answers = parse_answers(data, source=str(path))
    logger.debug(f"Loaded {len(answers)} answer(s) from {path}")
    return answers


def write_manifest(manifest: dict[str, Any], path: Path | None = None) -> str:
    """Serialize a manifest; also write it to ``path`` when given."""
    text = json.dumps(manifest, indent=2) + "\n"
    if path is not None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        logger.info(f"Wrote prompt manifest with {len(manifest.get('entries', []))} entries to {path}")
    return text
