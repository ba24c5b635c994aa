"""Step factories and fake errors shared by the test modules."""

from __future__ import annotations

from models.schemas import StepDescriptor


class Flaky:
    """Step body that raises ``error`` for the first ``failures`` calls, then returns ``value``."""

    def __init__(self, value, failures: int = 0, error: Exception | None = None):
        self.value = value
        self.failures = failures
        self.error = error or RuntimeError("boom")
        self.calls = 0

    def __call__(self, ctx):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.value


class RateLimited(Exception):
    status = 429


class Unauthorized(Exception):
    status = 401


def step(step_id: str, run=None, depends_on=(), **kwargs) -> StepDescriptor:
    return StepDescriptor(
        id=step_id,
        run=run or (lambda ctx, _id=step_id: f"{_id}-result"),
        depends_on=frozenset(depends_on),
        **kwargs,
    )
