"""
Fallback strategy — deterministic, offline substitutes for step results.

A rule is a pure function of the step context. It never calls the network
and always returns a structurally valid result, so a pipeline can finish
with zero connectivity (at reduced confidence).
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from models.schemas import StepContext

log = logging.getLogger(__name__)

FallbackRule = Callable[[StepContext], Any]


class FallbackStrategy:
    """Registry of rule-based fallbacks keyed by step id."""

    def __init__(self, rules: dict[str, FallbackRule] | None = None):
        self._rules: dict[str, FallbackRule] = dict(rules or {})

    def register(self, step_id: str, rule: FallbackRule) -> None:
        self._rules[step_id] = rule

    def has(self, step_id: str) -> bool:
        return step_id in self._rules

    def __call__(self, step_id: str, context: StepContext) -> Any:
        rule = self._rules.get(step_id)
        if rule is None:
            raise KeyError(f"No fallback registered for step '{step_id}'")
        log.info("[FALLBACK] Using rule-based result for %s", step_id)
        return rule(context)

    @property
    def step_ids(self) -> list[str]:
        return list(self._rules)
