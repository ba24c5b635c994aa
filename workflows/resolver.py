"""
Dependency resolver — turns a list of step descriptors into an execution order.

The fixed design pipeline (each phase depends on the previous one) and the
agent workflow DAG go through the same algorithm. Ties between ready steps
keep declaration order so runs are reproducible.
"""

from __future__ import annotations

import logging

from models.errors import DependencyCycleError, DuplicateStepError, UnknownDependencyError
from models.schemas import StepDescriptor

log = logging.getLogger(__name__)


def validate_steps(steps: list[StepDescriptor]) -> None:
    """Raise a PipelineConfigError for duplicate ids or unknown dependencies."""
    seen: set[str] = set()
    for step in steps:
        if step.id in seen:
            raise DuplicateStepError(step.id)
        seen.add(step.id)

    for step in steps:
        missing = sorted(dep for dep in step.depends_on if dep not in seen)
        if missing:
            raise UnknownDependencyError(step.id, missing)


def resolve_order(steps: list[StepDescriptor]) -> list[StepDescriptor]:
    """
    Return the steps in a dependency-respecting total order.

    Kahn's algorithm, but each round rescans the declaration order and takes
    the first ready step, so among independent steps the one declared first
    always runs first.

    Raises:
        DuplicateStepError, UnknownDependencyError, DependencyCycleError
    """
    validate_steps(steps)

    ordered: list[StepDescriptor] = []
    placed: set[str] = set()
    remaining = list(steps)

    while remaining:
        for index, step in enumerate(remaining):
            if step.depends_on <= placed:
                ordered.append(step)
                placed.add(step.id)
                del remaining[index]
                break
        else:
            raise DependencyCycleError(_find_cycle(remaining))

    log.debug("Resolved order: %s", [s.id for s in ordered])
    return ordered


def _find_cycle(remaining: list[StepDescriptor]) -> list[str]:
    """Walk unmet dependencies from the first stuck step until an id repeats."""
    by_id = {s.id: s for s in remaining}
    path: list[str] = []
    current = remaining[0].id
    while current not in path:
        path.append(current)
        # Every stuck step has at least one dependency that is also stuck
        current = sorted(d for d in by_id[current].depends_on if d in by_id)[0]
    return path[path.index(current):] + [current]
