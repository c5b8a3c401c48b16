"""Dependency graph utilities for step scheduling.

Steps form a graph through ``depends_on``. ``find_cycle`` reports the first
cycle as a closed path (``a -> b -> a``) and ``dependency_waves`` partitions an
acyclic step list into levels: every step lands in the earliest wave in which
all of its dependencies are in earlier waves. Within a wave, steps keep the
caller's declaration order.
"""

from collections.abc import Sequence

from .errors import CircularDependencyError
from .models import Step


def find_cycle(steps: Sequence[Step]) -> list[str] | None:
    """Return the first dependency cycle as a closed path, or None.

    Dependencies naming steps outside ``steps`` are ignored (reported
    separately by recipe validation).
    """
    by_name = {step.name: step for step in steps}
    visiting: list[str] = []
    on_path: set[str] = set()
    done: set[str] = set()

    def visit(name: str) -> list[str] | None:
        if name in on_path:
            start = visiting.index(name)
            return [*visiting[start:], name]
        if name in done:
            return None
        visiting.append(name)
        on_path.add(name)
        depends_on = by_name[name].depends_on
        for dep in depends_on if isinstance(depends_on, list) else []:
            if isinstance(dep, str) and dep in by_name:
                cycle = visit(dep)
                if cycle:
                    return cycle
        visiting.pop()
        on_path.discard(name)
        done.add(name)
        return None

    for step in steps:
        cycle = visit(step.name)
        if cycle:
            return cycle
    return None


def dependency_waves(steps: Sequence[Step]) -> list[list[Step]]:
    """Partition steps into waves of mutually independent steps.

    Raises:
        CircularDependencyError: If the dependencies contain a cycle
    """
    cycle = find_cycle(steps)
    if cycle:
        raise CircularDependencyError(cycle)

    known = {step.name for step in steps}
    remaining = list(steps)
    placed: set[str] = set()
    waves: list[list[Step]] = []

    while remaining:
        wave = [
            step
            for step in remaining
            if all(dep in placed or dep not in known for dep in step.depends_on or [])
        ]
        # Unreachable for acyclic input, kept so a bad graph cannot spin forever
        if not wave:
            stuck = ", ".join(step.name for step in remaining)
            raise CircularDependencyError([stuck])
        waves.append(wave)
        placed.update(step.name for step in wave)
        remaining = [step for step in remaining if step.name not in placed]

    return waves


def execution_order(steps: Sequence[Step]) -> list[str]:
    """A valid sequential execution order (waves flattened)."""
    return [step.name for wave in dependency_waves(steps) for step in wave]
