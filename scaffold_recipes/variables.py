"""Variable substitution and resolution."""

import json
import logging
import re
from collections.abc import Mapping
from typing import TYPE_CHECKING
from typing import Any

from .errors import UndefinedVariableError
from .errors import VariableResolutionError
from .models import VariableSpec

if TYPE_CHECKING:
    from .prompts import Prompter

logger = logging.getLogger(__name__)

# Support multi-level access: {{a.b.c.d}}, with optional inner whitespace
VARIABLE_PATTERN = re.compile(r"\{\{\s*([\w-]+(?:\.[\w-]+)*)\s*\}\}")

_MISSING = object()


def lookup_path(data: Any, path: str, default: Any = None) -> Any:
    """Resolve a dotted path (``a.b.0.c``) through dicts and lists."""
    value = data
    for part in path.split("."):
        if isinstance(value, Mapping) and part in value:
            value = value[part]
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            return default
    return value


def _render(value: Any) -> str:
    # json.dumps for dict/list produces valid JSON, not Python repr
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def substitute_variables(template: str, variables: Mapping[str, Any], strict: bool = True) -> Any:
    """
    Replace {{variable}} references with values.

    A template consisting of exactly one reference returns the raw value, so
    lists and dicts survive substitution.

    Args:
        template: String with {{variable}} placeholders
        variables: Values available to the template
        strict: Raise on undefined variables; otherwise leave the placeholder as-is

    Returns:
        Substituted string (or raw value for a lone reference)

    Raises:
        UndefinedVariableError: If a variable is undefined and strict is set
    """
    whole = VARIABLE_PATTERN.fullmatch(template.strip())
    if whole:
        value = lookup_path(variables, whole.group(1), _MISSING)
        if value is not _MISSING:
            return value

    def replace(match: re.Match) -> str:
        var_ref = match.group(1)
        value = lookup_path(variables, var_ref, _MISSING)
        if value is _MISSING:
            if not strict:
                return match.group(0)
            raise UndefinedVariableError(var_ref, sorted(str(k) for k in variables.keys()))
        return _render(value)

    return VARIABLE_PATTERN.sub(replace, template)


def substitute_string(template: str, variables: Mapping[str, Any], strict: bool = True) -> str:
    """Like substitute_variables but always returns a string."""
    value = substitute_variables(template, variables, strict=strict)
    return value if isinstance(value, str) else _render(value)


def substitute_recursive(value: Any, variables: Mapping[str, Any], strict: bool = True) -> Any:
    """
    Recursively substitute {{variable}} references in nested structures.

    Strings are substituted, dicts and lists are walked, other values pass
    through unchanged.
    """
    if isinstance(value, str):
        return substitute_variables(value, variables, strict=strict)
    if isinstance(value, dict):
        return {k: substitute_recursive(v, variables, strict=strict) for k, v in value.items()}
    if isinstance(value, list):
        return [substitute_recursive(item, variables, strict=strict) for item in value]
    return value


class VariableResolver:
    """Resolve declared recipe variables.

    Precedence: explicitly provided value > declared default > interactive
    prompt (only for required variables, and only when prompting is allowed).
    Provided values with no declaration pass through unchanged.
    """

    def __init__(self, prompter: "Prompter | None" = None):
        self.prompter = prompter

    def resolve(
        self,
        specs: Mapping[str, VariableSpec],
        provided: Mapping[str, Any] | None = None,
        skip_prompts: bool = False,
    ) -> dict[str, Any]:
        """
        Resolve variables against their specs.

        Args:
            specs: Declared variables by name
            provided: Caller-supplied values (CLI flags, parent recipe, API)
            skip_prompts: Never prompt; missing required variables fail

        Returns:
            Resolved variables

        Raises:
            VariableResolutionError: If required variables are missing or values violate constraints
        """
        provided = dict(provided or {})
        resolved: dict[str, Any] = {}
        missing: list[str] = []
        errors: list[str] = []
        can_prompt = not skip_prompts and self.prompter is not None and self.prompter.interactive

        for name, spec in specs.items():
            if provided.get(name) is not None:
                value = spec.coerce(provided[name])
            elif spec.default is not None:
                value = spec.default
            elif spec.required:
                if not can_prompt:
                    missing.append(name)
                    continue
                value = spec.coerce(self._prompt_for(spec))
                if value is None or value == "":
                    missing.append(name)
                    continue
            else:
                continue

            for problem in spec.check(value):
                errors.append(f"Variable '{name}' {problem}")
            resolved[name] = value

        for name, value in provided.items():
            if name not in specs:
                resolved[name] = value

        if missing or errors:
            raise VariableResolutionError(missing=missing, errors=errors)

        logger.debug(f"Resolved {len(resolved)} variables")
        return resolved

    def _prompt_for(self, spec: VariableSpec) -> Any:
        from .prompts import PromptRequest

        prompt_type = "input"
        options: list[Any] = []
        if spec.type == "boolean":
            prompt_type = "confirm"
        elif spec.type == "enum":
            prompt_type = "select"
            options = list(spec.values or [])

        request = PromptRequest(
            name=spec.name,
            message=spec.prompt or spec.description or f"Enter value for '{spec.name}'",
            prompt_type=prompt_type,
            options=options,
            default=spec.default,
            validate_pattern=spec.pattern,
        )
        return self.prompter.ask(request)
