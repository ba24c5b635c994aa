"""
Exceptions raised by the pipeline executor and its collaborators.
"""

from __future__ import annotations

from typing import Any

from models.schemas import FailureKind


class PilotError(Exception):
    """Base exception for all phase-pilot errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ── Configuration (detected before any step runs) ─────────────────────

class PipelineConfigError(PilotError):
    """The step graph is not executable."""


class DuplicateStepError(PipelineConfigError):
    def __init__(self, step_id: str):
        super().__init__(f"Duplicate step id: {step_id}", {"step": step_id})
        self.step_id = step_id


class UnknownDependencyError(PipelineConfigError):
    def __init__(self, step_id: str, missing: list[str]):
        super().__init__(
            f"Step '{step_id}' depends on unknown steps: {', '.join(missing)}",
            {"step": step_id, "missing": missing},
        )
        self.step_id = step_id
        self.missing = missing


class DependencyCycleError(PipelineConfigError):
    def __init__(self, cycle: list[str]):
        super().__init__(
            f"Dependency cycle detected: {' -> '.join(cycle)}",
            {"cycle": cycle},
        )
        self.cycle = cycle


# ── Run-time ──────────────────────────────────────────────────────────

class PipelineAbortedError(PilotError):
    """A required step failed terminally. The checkpoint is left in place."""

    def __init__(self, step_id: str, failure, state, result=None):
        super().__init__(
            f"Pipeline halted at step '{step_id}': {failure.kind.label}",
            {"step": step_id, "failure_kind": failure.kind.value},
        )
        self.step_id = step_id
        self.failure = failure
        self.state = state
        self.result = result


class PipelineCancelledError(PilotError):
    """Cancellation was requested; raised at the next step boundary."""

    def __init__(self, next_step: str | None, state, result=None):
        super().__init__(
            f"Pipeline cancelled before step '{next_step}'",
            {"next_step": next_step},
        )
        self.next_step = next_step
        self.state = state
        self.result = result


class QualityCheckError(PilotError):
    """Generated artifacts failed validation."""


# ── Checkpoints ───────────────────────────────────────────────────────

class CheckpointError(PilotError):
    pass


class CheckpointWriteError(CheckpointError):
    pass


class CheckpointCorruptError(CheckpointError):
    pass


# ── Generators ────────────────────────────────────────────────────────

class GeneratorError(PilotError):
    """A generator call failed.

    Carries the structural fields the failure classifier reads, so that
    provider-specific exceptions never have to be inspected by message.
    """

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        code: str | None = None,
        kind=None,
        retry_after: int | None = None,
        provider: str | None = None,
    ):
        super().__init__(message, {"status": status, "code": code, "provider": provider})
        self.status = status
        self.code = code
        self.kind = kind
        self.retry_after = retry_after
        self.provider = provider


class AllProvidersFailedError(GeneratorError):
    def __init__(self, attempted: list[str], last_error: BaseException | None = None):
        if attempted:
            message = "All AI providers failed to generate text"
            kind = getattr(last_error, "kind", None)
        else:
            message = "No AI provider has an API key configured"
            kind = FailureKind.AUTH_ERROR
        super().__init__(
            message,
            status=getattr(last_error, "status", None),
            code=getattr(last_error, "code", None),
            kind=kind,
        )
        self.attempted = attempted
        self.last_error = last_error
