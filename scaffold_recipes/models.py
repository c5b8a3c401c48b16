"""Recipe data models and YAML parsing."""

import re
from dataclasses import dataclass
from dataclasses import field
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from .expression_evaluator import ExpressionError
from .expression_evaluator import parse_expression

VARIABLE_TYPES = ("string", "number", "boolean", "enum", "array", "object")
PROMPT_TYPES = ("input", "select", "multiselect", "confirm")
AI_OUTPUT_TYPES = ("variable", "file", "inject", "stdout")
DATA_FORMATS = ("json", "yaml", "toml", "env")

# Keys renamed while parsing a step ('condition' is the older spelling of 'when')
_STEP_ALIASES = {
    "condition": "when",
    "variable_overrides": "variables",
    "depends": "depends_on",
}

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def snake_case(key: str) -> str:
    """Convert a camelCase recipe key to snake_case."""
    return _CAMEL_BOUNDARY.sub("_", key).replace("-", "_").lower()


def _normalize_keys(data: dict[str, Any]) -> dict[str, Any]:
    return {snake_case(str(k)): v for k, v in data.items()}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass
class VariableSpec:
    """Declared recipe variable with its constraints."""

    name: str
    type: str = "string"
    required: bool = False
    default: Any = None
    description: str | None = None
    prompt: str | None = None
    pattern: str | None = None
    min: float | None = None
    max: float | None = None
    values: list[Any] | None = None

    @classmethod
    def from_dict(cls, name: str, data: Any) -> "VariableSpec":
        """Build a spec from YAML. A bare scalar is treated as the default value."""
        if not isinstance(data, dict):
            inferred = "string"
            if isinstance(data, bool):
                inferred = "boolean"
            elif _is_number(data):
                inferred = "number"
            elif isinstance(data, list):
                inferred = "array"
            return cls(name=name, type=inferred, default=data)

        data = _normalize_keys(data)
        known = {f.name for f in fields(cls)} - {"name"}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Variable '{name}': unknown field(s): {', '.join(unknown)}")
        return cls(name=name, **data)

    def validate(self) -> list[str]:
        """Validate the spec itself."""
        errors = []
        prefix = f"Variable '{self.name}'"

        if self.type not in VARIABLE_TYPES:
            errors.append(f"{prefix}: type must be one of {', '.join(VARIABLE_TYPES)}, got '{self.type}'")

        if self.pattern is not None:
            try:
                re.compile(self.pattern)
            except re.error as e:
                errors.append(f"{prefix}: invalid pattern '{self.pattern}': {e}")

        if self.type == "enum" and not self.values:
            errors.append(f"{prefix}: enum variables require a non-empty 'values' list")

        if self.min is not None and self.max is not None and self.min > self.max:
            errors.append(f"{prefix}: min ({self.min}) must not exceed max ({self.max})")

        # A declared default must satisfy the rest of the spec
        if not errors and self.default is not None:
            for problem in self.check(self.default):
                errors.append(f"{prefix}: default {problem}")

        return errors

    def coerce(self, value: Any) -> Any:
        """Convert string input (CLI flags, prompts) to the declared type."""
        if not isinstance(value, str):
            return value
        if self.type == "number":
            try:
                number = float(value)
            except ValueError:
                return value
            return int(number) if number.is_integer() and "." not in value else number
        if self.type == "boolean":
            lowered = value.strip().lower()
            if lowered in ("true", "yes", "y", "1", "on"):
                return True
            if lowered in ("false", "no", "n", "0", "off"):
                return False
            return value
        if self.type == "array":
            stripped = value.strip()
            if stripped.startswith("["):
                try:
                    parsed = yaml.safe_load(stripped)
                except yaml.YAMLError:
                    return value
                return parsed if isinstance(parsed, list) else value
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    def check(self, value: Any) -> list[str]:
        """Return constraint violations for a value (empty when valid)."""
        problems = []

        if self.type == "string" and not isinstance(value, str):
            problems.append(f"must be a string, got {type(value).__name__}")
        elif self.type == "number" and not _is_number(value):
            problems.append(f"must be a number, got {type(value).__name__}")
        elif self.type == "boolean" and not isinstance(value, bool):
            problems.append(f"must be a boolean, got {type(value).__name__}")
        elif self.type == "array" and not isinstance(value, list):
            problems.append(f"must be an array, got {type(value).__name__}")
        elif self.type == "object" and not isinstance(value, dict):
            problems.append(f"must be an object, got {type(value).__name__}")

        if problems:
            return problems

        if self.type == "enum" and self.values and value not in self.values:
            problems.append(f"must be one of {', '.join(str(v) for v in self.values)}, got '{value}'")

        if self.pattern is not None and isinstance(value, str):
            try:
                if not re.search(self.pattern, value):
                    problems.append(f"'{value}' does not match pattern '{self.pattern}'")
            except re.error:
                problems.append(f"pattern '{self.pattern}' is invalid")

        # min/max bound numbers by value and strings/arrays by length
        measure = None
        unit = ""
        if _is_number(value):
            measure = value
        elif isinstance(value, (str, list)):
            measure = len(value)
            unit = " in length"
        if measure is not None:
            if self.min is not None and measure < self.min:
                problems.append(f"must be at least {self.min}{unit}, got {measure}")
            if self.max is not None and measure > self.max:
                problems.append(f"must be at most {self.max}{unit}, got {measure}")

        return problems


@dataclass
class RecipeSettings:
    """Recipe-wide execution defaults."""

    timeout: float | None = None  # Seconds per step (None = executor default)
    retries: int = 0
    continue_on_error: bool = False
    max_parallel: int | None = None  # Lowers the run's limit when set
    working_dir: str | None = None
    max_depth: int = 10  # Nested recipe composition limit

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "RecipeSettings":
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("settings must be a dictionary")
        data = _normalize_keys(data)
        if "max_parallel_steps" in data:
            data["max_parallel"] = data.pop("max_parallel_steps")
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"settings: unknown field(s): {', '.join(unknown)}")
        return cls(**data)

    def validate(self) -> list[str]:
        errors = []
        if self.timeout is not None and (not _is_number(self.timeout) or self.timeout <= 0):
            errors.append(f"settings.timeout must be a positive number of seconds, got {self.timeout}")
        if not isinstance(self.retries, int) or self.retries < 0:
            errors.append(f"settings.retries must be a non-negative integer, got {self.retries}")
        if self.max_parallel is not None and (not isinstance(self.max_parallel, int) or self.max_parallel < 1):
            errors.append(f"settings.max_parallel must be a positive integer, got {self.max_parallel}")
        if not isinstance(self.max_depth, int) or not 1 <= self.max_depth <= 50:
            errors.append(f"settings.max_depth must be 1-50, got {self.max_depth}")
        return errors


@dataclass
class Step:
    """Fields shared by every step kind.

    Concrete step kinds are the subclasses below; ``tool`` is the discriminator.
    """

    name: str = ""
    tool: str = ""
    description: str | None = None
    depends_on: list[str] = field(default_factory=list)
    when: str | bool | None = None
    parallel: bool = False  # Run concurrently with other parallel steps in the same wave
    continue_on_error: bool | None = None  # None = use the run/recipe default
    retries: int | None = None
    timeout: float | None = None  # Seconds
    unknown_fields: list[str] = field(default_factory=list, repr=False, compare=False)
    parse_errors: list[str] = field(default_factory=list, repr=False, compare=False)

    def validate(self) -> list[str]:
        """Validate fields common to all steps, then the step kind's own fields."""
        errors = []

        if not self.name or not str(self.name).strip():
            errors.append("Step missing required field: name")
            label = "Unnamed step"
        else:
            label = f"Step '{self.name}'"

        errors.extend(f"{label}: {problem}" for problem in self.parse_errors)

        if self.unknown_fields:
            errors.append(f"{label}: unknown field(s) for {self.tool} step: {', '.join(self.unknown_fields)}")

        if not isinstance(self.depends_on, list) or not all(isinstance(d, str) for d in self.depends_on):
            errors.append(f"{label}: depends_on must be a list of step names")
        elif self.name in self.depends_on:
            errors.append(f"{label}: cannot depend on itself")

        if self.retries is not None and (not isinstance(self.retries, int) or self.retries < 0):
            errors.append(f"{label}: retries must be a non-negative integer")

        if self.timeout is not None and (not _is_number(self.timeout) or self.timeout <= 0):
            errors.append(f"{label}: timeout must be a positive number of seconds")

        if isinstance(self.when, str):
            try:
                parse_expression(self.when)
            except ExpressionError as e:
                errors.append(f"{label}: invalid 'when' condition: {e}")

        errors.extend(f"{label}: {problem}" for problem in self._validate_fields())
        return errors

    def _validate_fields(self) -> list[str]:
        return []

    def children(self) -> list["Step"]:
        """Nested steps for grouping steps, empty otherwise."""
        return []


@dataclass
class TemplateStep(Step):
    """Render a template file or directory with the recipe variables."""

    tool: str = "template"
    template: str = ""
    to: str | None = None  # Output path override for single-file templates
    variables: dict[str, Any] = field(default_factory=dict)
    force: bool = False
    unless_exists: bool = False
    exclude: list[str] = field(default_factory=list)

    def _validate_fields(self) -> list[str]:
        errors = []
        if not self.template:
            errors.append("template steps require 'template' field")
        if self.to is not None and not str(self.to).strip():
            errors.append("'to' cannot be empty")
        if not isinstance(self.variables, dict):
            errors.append("'variables' must be a dictionary")
        return errors


@dataclass
class ActionStep(Step):
    """Invoke a registered action."""

    tool: str = "action"
    action: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)

    def _validate_fields(self) -> list[str]:
        errors = []
        if not self.action:
            errors.append("action steps require 'action' field")
        if not isinstance(self.parameters, dict):
            errors.append("'parameters' must be a dictionary")
        return errors


@dataclass
class CodemodStep(Step):
    """Transform existing source files."""

    tool: str = "codemod"
    codemod: str = ""
    files: list[str] = field(default_factory=list)
    parameters: dict[str, Any] = field(default_factory=dict)
    backup: bool = False

    def _validate_fields(self) -> list[str]:
        errors = []
        if not self.codemod:
            errors.append("codemod steps require 'codemod' field")
        if not self.files or not isinstance(self.files, list):
            errors.append("codemod steps require a non-empty 'files' list")
        if not isinstance(self.parameters, dict):
            errors.append("'parameters' must be a dictionary")
        return errors


@dataclass
class RecipeStep(Step):
    """Run another recipe as a step."""

    tool: str = "recipe"
    recipe: str = ""
    inherit_variables: bool = True
    variables: dict[str, Any] = field(default_factory=dict)  # Overrides, highest precedence
    variable_mapping: dict[str, str] = field(default_factory=dict)  # parent name -> sub-recipe name
    working_dir: str | None = None

    def _validate_fields(self) -> list[str]:
        errors = []
        if not self.recipe:
            errors.append("recipe steps require 'recipe' field")
        if not isinstance(self.variables, dict):
            errors.append("'variables' must be a dictionary")
        if not isinstance(self.variable_mapping, dict) or not all(
            isinstance(v, str) for v in self.variable_mapping.values()
        ):
            errors.append("'variable_mapping' must map parent variable names to sub-recipe names")
        return errors


@dataclass
class ShellStep(Step):
    """Execute a shell command."""

    tool: str = "shell"
    command: str = ""
    cwd: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    output: str | None = None  # Variable that receives stdout
    output_exit_code: str | None = None  # Variable that receives the exit code

    def _validate_fields(self) -> list[str]:
        errors = []
        if not self.command:
            errors.append("shell steps require 'command' field")
        elif not str(self.command).strip():
            errors.append("shell command cannot be empty or whitespace")
        if not isinstance(self.env, dict):
            errors.append("'env' must be a dictionary")
        for attr in ("output", "output_exit_code"):
            value = getattr(self, attr)
            if value and not str(value).replace("_", "").isalnum():
                errors.append(f"{attr} must be alphanumeric with underscores")
        return errors


@dataclass
class QueryStep(Step):
    """Read a structured data file and export values into variables."""

    tool: str = "query"
    file: str = ""
    format: str | None = None  # Inferred from the file extension when omitted
    checks: list[dict[str, Any]] = field(default_factory=list)
    expression: str | None = None
    output: str | None = None  # Variable that receives the expression result

    def _validate_fields(self) -> list[str]:
        errors = []
        if not self.file:
            errors.append("query steps require 'file' field")
        if self.format is not None and self.format not in DATA_FORMATS:
            errors.append(f"format must be one of {', '.join(DATA_FORMATS)}, got '{self.format}'")
        if not isinstance(self.checks, list):
            errors.append("'checks' must be a list")
        else:
            for i, check in enumerate(self.checks):
                if not isinstance(check, dict) or not check.get("path"):
                    errors.append(f"checks[{i}] requires a 'path'")
        if self.expression is not None:
            try:
                parse_expression(self.expression)
            except ExpressionError as e:
                errors.append(f"invalid expression: {e}")
        if not self.checks and not self.expression:
            errors.append("query steps require 'checks' or 'expression'")
        return errors


@dataclass
class PatchStep(Step):
    """Deep-merge values into a structured data file."""

    tool: str = "patch"
    file: str = ""
    merge: dict[str, Any] = field(default_factory=dict)
    format: str | None = None
    create_if_missing: bool = True

    def _validate_fields(self) -> list[str]:
        errors = []
        if not self.file:
            errors.append("patch steps require 'file' field")
        if not isinstance(self.merge, dict) or not self.merge:
            errors.append("patch steps require a non-empty 'merge' dictionary")
        if self.format is not None and self.format not in ("json", "yaml", "toml"):
            errors.append(f"format must be json, yaml or toml, got '{self.format}'")
        return errors


@dataclass
class EnsureDirsStep(Step):
    """Create directories that do not exist yet."""

    tool: str = "ensure-dirs"
    paths: list[str] = field(default_factory=list)

    def _validate_fields(self) -> list[str]:
        if not self.paths or not isinstance(self.paths, list):
            return ["ensure-dirs steps require a non-empty 'paths' list"]
        return []


@dataclass
class InstallStep(Step):
    """Install packages with the project's package manager."""

    tool: str = "install"
    packages: list[str] = field(default_factory=list)
    dev: bool = False
    optional: bool = False
    package_manager: str | None = None

    def _validate_fields(self) -> list[str]:
        if not self.packages or not isinstance(self.packages, list):
            return ["install steps require a non-empty 'packages' list"]
        return []


@dataclass
class PromptStep(Step):
    """Ask the operator for a value and store it in a variable."""

    tool: str = "prompt"
    variable: str = ""
    message: str | None = None
    prompt_type: str = "input"
    options: list[Any] = field(default_factory=list)
    default: Any = None
    validate_pattern: str | None = None  # YAML: "validate", e.g. "/^[a-z]+$/"

    def _validate_fields(self) -> list[str]:
        errors = []
        if not self.variable:
            errors.append("prompt steps require 'variable' field")
        if self.prompt_type not in PROMPT_TYPES:
            errors.append(f"prompt type must be one of {', '.join(PROMPT_TYPES)}, got '{self.prompt_type}'")
        if self.prompt_type in ("select", "multiselect") and not self.options:
            errors.append(f"{self.prompt_type} prompts require 'options'")
        if self.validate_pattern:
            try:
                re.compile(strip_regex_delimiters(self.validate_pattern))
            except re.error as e:
                errors.append(f"invalid validate pattern: {e}")
        return errors


@dataclass
class AiOutput:
    """Where an AI answer is delivered during the apply pass."""

    type: str = "variable"
    variable: str | None = None
    to: str | None = None
    inject_into: str | None = None
    after: str | None = None
    before: str | None = None
    at: str | None = None  # "start" or "end"

    def validate(self) -> list[str]:
        errors = []
        if self.type not in AI_OUTPUT_TYPES:
            errors.append(f"output type must be one of {', '.join(AI_OUTPUT_TYPES)}, got '{self.type}'")
        if self.type == "variable" and not self.variable:
            errors.append("output type 'variable' requires 'variable'")
        if self.type == "file" and not self.to:
            errors.append("output type 'file' requires 'to'")
        if self.type == "inject":
            if not self.inject_into:
                errors.append("output type 'inject' requires 'inject_into'")
            if self.after and self.before:
                errors.append("inject output accepts only one of 'after' or 'before'")
            if self.at is not None and self.at not in ("start", "end"):
                errors.append(f"inject 'at' must be 'start' or 'end', got '{self.at}'")
        return errors

    def describe(self) -> dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass
class AiStep(Step):
    """Generate content through the two-pass AI protocol."""

    tool: str = "ai"
    key: str | None = None  # Manifest/answers key, defaults to the step name
    prompt: str = ""
    system: str | None = None
    context: list[str] = field(default_factory=list)
    constraints: list[str] = field(default_factory=list)
    examples: list[str] = field(default_factory=list)
    required: bool = True
    output: AiOutput = field(default_factory=AiOutput)

    @property
    def answer_key(self) -> str:
        return self.key or self.name

    def _validate_fields(self) -> list[str]:
        errors = []
        if not self.prompt or not str(self.prompt).strip():
            errors.append("ai steps require a non-empty 'prompt' field")
        errors.extend(self.output.validate())
        return errors


@dataclass
class SequenceStep(Step):
    """Run nested steps one after another."""

    tool: str = "sequence"
    steps: list[Step] = field(default_factory=list)

    def _validate_fields(self) -> list[str]:
        if not self.steps:
            return [f"{self.tool} steps require a non-empty nested step list"]
        return []

    def children(self) -> list[Step]:
        return self.steps


@dataclass
class ParallelStep(SequenceStep):
    """Run nested steps concurrently, bounded by ``limit``."""

    tool: str = "parallel"
    limit: int | None = None

    def _validate_fields(self) -> list[str]:
        errors = super()._validate_fields()
        if self.limit is not None and (not isinstance(self.limit, int) or self.limit < 1):
            errors.append("parallel 'limit' must be a positive integer")
        return errors


@dataclass
class UnparsedStep(Step):
    """A step whose kind could not be determined.

    Kept in the recipe so validation reports its problems alongside every
    other error instead of stopping at the first bad step.
    """


STEP_TYPES: dict[str, type[Step]] = {
    "template": TemplateStep,
    "action": ActionStep,
    "codemod": CodemodStep,
    "recipe": RecipeStep,
    "shell": ShellStep,
    "query": QueryStep,
    "patch": PatchStep,
    "ensure-dirs": EnsureDirsStep,
    "install": InstallStep,
    "prompt": PromptStep,
    "ai": AiStep,
    "sequence": SequenceStep,
    "parallel": ParallelStep,
}

# Field whose presence implies the tool when 'tool' is omitted, in priority order
_TOOL_INFERENCE = [
    ("command", "shell"),
    ("recipe", "recipe"),
    ("prompt_type", "prompt"),
    ("template", "template"),
    ("action", "action"),
    ("codemod", "codemod"),
    ("merge", "patch"),
    ("packages", "install"),
    ("paths", "ensure-dirs"),
]


def strip_regex_delimiters(pattern: str) -> str:
    """Turn '/expr/' into 'expr'; other strings are returned unchanged."""
    if len(pattern) >= 2 and pattern.startswith("/") and pattern.endswith("/"):
        return pattern[1:-1]
    return pattern


def infer_tool(data: dict[str, Any]) -> str | None:
    """Infer the tool kind from which tool-specific field is present."""
    if isinstance(data.get("parallel"), list):
        return "parallel"
    if isinstance(data.get("sequence"), list) or isinstance(data.get("steps"), list):
        return "sequence"
    for key, tool in _TOOL_INFERENCE:
        if key in data:
            return tool
    return None


def parse_step(step_data: dict[str, Any]) -> Step:
    """Parse a single step from YAML data.

    Problems that prevent building the step kind are recorded on an
    ``UnparsedStep`` and surface through ``Recipe.validate``.
    """
    if not isinstance(step_data, dict):
        return UnparsedStep(parse_errors=[f"each step must be a dictionary, got {type(step_data).__name__}"])

    data = _normalize_keys(step_data)

    # Older recipes nest composition options under recipe_config
    recipe_config = data.pop("recipe_config", None)
    if isinstance(recipe_config, dict):
        data.update(_normalize_keys(recipe_config))

    tool = data.get("tool") or infer_tool(data)
    problem = None
    if tool is None:
        problem = "cannot determine tool; set 'tool' explicitly"
    else:
        tool = snake_case(str(tool)).replace("_", "-")
        if tool not in STEP_TYPES:
            problem = f"unknown tool '{tool}'. Known tools: {', '.join(STEP_TYPES)}"
    if problem is not None:
        depends_on = data.get("depends_on", data.get("depends", []))
        return UnparsedStep(
            name=str(data.get("name") or ""),
            tool=tool or "",
            depends_on=[depends_on] if isinstance(depends_on, str) else depends_on,
            parse_errors=[problem],
        )
    step_cls = STEP_TYPES[tool]
    data["tool"] = tool
    parse_errors = []

    for old, new in _STEP_ALIASES.items():
        if old in data and new not in data:
            data[new] = data.pop(old)

    if isinstance(data.get("depends_on"), str):
        data["depends_on"] = [data["depends_on"]]

    if step_cls is PromptStep:
        if "type" in data and "prompt_type" not in data:
            data["prompt_type"] = data.pop("type")
        if "validate" in data:
            data["validate_pattern"] = data.pop("validate")

    if issubclass(step_cls, SequenceStep):
        nested = data.pop("steps", None)
        for group_key in ("sequence", "parallel"):
            if isinstance(data.get(group_key), list):
                nested = data.pop(group_key)
        data["steps"] = [parse_step(child) for child in (nested or [])]

    if step_cls is AiStep:
        output = data.get("output")
        if isinstance(output, dict):
            output = _normalize_keys(output)
            known_output = {f.name for f in fields(AiOutput)}
            unknown_output = sorted(k for k in output if k not in known_output)
            if unknown_output:
                parse_errors.append(f"unknown output field(s): {', '.join(unknown_output)}")
            data["output"] = AiOutput(**{k: v for k, v in output.items() if k in known_output})
        elif isinstance(output, str):
            data["output"] = AiOutput(type="variable", variable=output)
        elif output is not None:
            parse_errors.append(f"'output' must be a variable name or a mapping, got {type(output).__name__}")
            data.pop("output")
        for list_field in ("context", "constraints", "examples"):
            if isinstance(data.get(list_field), str):
                data[list_field] = [data[list_field]]

    if step_cls is TemplateStep and isinstance(data.get("exclude"), str):
        data["exclude"] = [data["exclude"]]
    if step_cls is CodemodStep and isinstance(data.get("files"), str):
        data["files"] = [data["files"]]
    if step_cls is InstallStep and isinstance(data.get("packages"), str):
        data["packages"] = data["packages"].split()
    if step_cls is EnsureDirsStep and isinstance(data.get("paths"), str):
        data["paths"] = [data["paths"]]

    known = {f.name for f in fields(step_cls)} - {"unknown_fields", "parse_errors"}
    unknown = sorted(k for k in data if k not in known)
    for key in unknown:
        data.pop(key)

    return step_cls(unknown_fields=unknown, parse_errors=parse_errors, **data)


@dataclass
class Recipe:
    """Represents a complete recipe definition."""

    name: str
    description: str = ""
    version: str = ""
    steps: list[Step] = field(default_factory=list)
    variables: dict[str, VariableSpec] = field(default_factory=dict)
    settings: RecipeSettings = field(default_factory=RecipeSettings)
    author: str | None = None
    tags: list[str] = field(default_factory=list)
    examples: list[Any] = field(default_factory=list)  # Documentation only
    source_path: Path | None = None
    parse_errors: list[str] = field(default_factory=list, repr=False, compare=False)

    @property
    def base_dir(self) -> Path | None:
        """Directory relative paths in this recipe resolve against."""
        return self.source_path.parent if self.source_path else None

    @classmethod
    def from_dict(cls, data: Any, source_path: Path | None = None) -> "Recipe":
        """Build a recipe from parsed YAML data.

        Only a document that is not a mapping, or whose ``steps`` is not a
        list, raises. Problems in individual variables or settings are kept in
        ``parse_errors`` and reported by ``validate`` with everything else.
        """
        if not isinstance(data, dict):
            raise ValueError("Recipe YAML must be a dictionary")

        steps_data = data.get("steps") or []
        if not isinstance(steps_data, list):
            raise ValueError("'steps' must be a list")
        steps = [parse_step(sd) for sd in steps_data]

        parse_errors = []
        variables = {}
        variables_data = data.get("variables") or {}
        if not isinstance(variables_data, dict):
            parse_errors.append("'variables' must be a dictionary")
            variables_data = {}
        for name, spec in variables_data.items():
            try:
                variables[name] = VariableSpec.from_dict(name, spec)
            except (TypeError, ValueError) as e:
                parse_errors.append(str(e))

        try:
            settings = RecipeSettings.from_dict(data.get("settings"))
        except (TypeError, ValueError) as e:
            parse_errors.append(str(e))
            settings = RecipeSettings()

        tags = data.get("tags") or []
        examples = data.get("examples") or []

        return cls(
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            version=str(data.get("version") or ""),
            steps=steps,
            variables=variables,
            settings=settings,
            author=data.get("author"),
            tags=list(tags) if isinstance(tags, list) else [str(tags)],
            examples=list(examples) if isinstance(examples, list) else [examples],
            source_path=source_path,
            parse_errors=parse_errors,
        )

    @classmethod
    def from_string(cls, text: str, source_path: Path | None = None) -> "Recipe":
        """Parse a recipe from YAML text."""
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid recipe YAML: {e}") from e
        return cls.from_dict(data, source_path=source_path)

    @classmethod
    def from_yaml(cls, path: Path) -> "Recipe":
        """Load recipe from YAML file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Recipe file not found: {path}")

        with open(path, encoding="utf-8") as f:
            text = f.read()

        return cls.from_string(text, source_path=path.resolve())

    def iter_steps(self) -> list[Step]:
        """All steps, including steps nested in sequence/parallel groups."""
        result: list[Step] = []

        def walk(steps: list[Step]) -> None:
            for step in steps:
                result.append(step)
                walk(step.children())

        walk(self.steps)
        return result

    def get_step(self, name: str) -> Step | None:
        for step in self.iter_steps():
            if step.name == name:
                return step
        return None

    def has_ai_steps(self) -> bool:
        return any(isinstance(step, AiStep) for step in self.iter_steps())

    def validate(self) -> list[str]:
        """Validate recipe structure and constraints."""
        errors = []

        if not self.name or not self.name.strip():
            errors.append("Recipe missing required field: name")

        if not self.steps:
            errors.append("Recipe must have at least one step")

        errors.extend(self.parse_errors)

        for spec in self.variables.values():
            errors.extend(spec.validate())

        errors.extend(self.settings.validate())

        all_steps = self.iter_steps()
        for step in all_steps:
            errors.extend(step.validate())

        # Names are unique across the whole recipe, nested steps included
        step_names = [step.name for step in all_steps if step.name]
        duplicates = sorted({n for n in step_names if step_names.count(n) > 1})
        if duplicates:
            errors.append(f"Duplicate step names: {', '.join(duplicates)}")

        # depends_on may only reference siblings in the same step list
        def check_scope(steps: list[Step]) -> None:
            names = {step.name for step in steps}
            for step in steps:
                if isinstance(step.depends_on, list):
                    for dep in step.depends_on:
                        if isinstance(dep, str) and dep not in names:
                            errors.append(f"Step '{step.name}': depends_on references unknown step '{dep}'")
                check_scope(step.children())

        check_scope(self.steps)
        return errors
