"""Operator prompting.

Prompts block the run until answered. ``ClickPrompter`` asks on the terminal;
``NonInteractivePrompter`` returns declared defaults; ``StaticPrompter``
answers from a mapping for scripted runs.
"""

import re
from dataclasses import dataclass
from dataclasses import field
from typing import Any

import click

from .models import strip_regex_delimiters


@dataclass
class PromptRequest:
    """A single question for the operator."""

    name: str
    message: str
    prompt_type: str = "input"
    options: list[Any] = field(default_factory=list)
    default: Any = None
    validate_pattern: str | None = None

    def check(self, value: Any) -> str | None:
        """Return an error message when ``value`` fails the validate pattern."""
        if not self.validate_pattern or not isinstance(value, str):
            return None
        pattern = strip_regex_delimiters(self.validate_pattern)
        if not re.search(pattern, value):
            return f"'{value}' does not match {self.validate_pattern}"
        return None


class Prompter:
    """Interface for answering prompts."""

    interactive = True

    def ask(self, request: PromptRequest) -> Any:
        raise NotImplementedError


class NonInteractivePrompter(Prompter):
    """Always answers with the declared default."""

    interactive = False

    def ask(self, request: PromptRequest) -> Any:
        if request.prompt_type == "multiselect" and request.default is None:
            return []
        if request.prompt_type == "confirm" and request.default is None:
            return False
        return request.default


class StaticPrompter(Prompter):
    """Answers from a fixed mapping, falling back to defaults."""

    def __init__(self, answers: dict[str, Any]):
        self.answers = dict(answers)
        self.asked: list[str] = []

    def ask(self, request: PromptRequest) -> Any:
        self.asked.append(request.name)
        return self.answers.get(request.name, request.default)


class ClickPrompter(Prompter):
    """Terminal prompts through click."""

    def ask(self, request: PromptRequest) -> Any:
        if request.prompt_type == "confirm":
            return click.confirm(request.message, default=bool(request.default))

        if request.prompt_type == "select":
            choices = [str(option) for option in request.options]
            default = str(request.default) if request.default is not None else None
            answer = click.prompt(request.message, type=click.Choice(choices), default=default)
            # Map back to the original option value (options may be numbers)
            return request.options[choices.index(answer)]

        if request.prompt_type == "multiselect":
            choices = [str(option) for option in request.options]
            click.echo(f"{request.message} (comma-separated: {', '.join(choices)})")
            default = ",".join(str(v) for v in request.default or [])
            while True:
                raw = click.prompt(">", default=default, show_default=bool(default))
                picked = [item.strip() for item in raw.split(",") if item.strip()]
                invalid = [item for item in picked if item not in choices]
                if not invalid:
                    return [request.options[choices.index(item)] for item in picked]
                click.echo(f"Unknown option(s): {', '.join(invalid)}", err=True)

        while True:
            value = click.prompt(request.message, default=request.default)
            problem = request.check(value)
            if problem is None:
                return value
            click.echo(problem, err=True)
