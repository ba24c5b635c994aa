"""
Data models for the pipeline executor.

Step descriptors are defined once at startup and never mutated; the
PipelineState is the only record that changes during a run and the only
one that is persisted (see features.checkpoints).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable


class FailureKind(str, Enum):
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    AUTH_ERROR = "auth_error"
    NETWORK_ERROR = "network_error"
    QUOTA_EXCEEDED = "quota_exceeded"
    UNKNOWN = "unknown"

    @property
    def label(self) -> str:
        return _FAILURE_LABELS[self]


_FAILURE_LABELS = {
    FailureKind.RATE_LIMIT: "Rate limit exceeded",
    FailureKind.TIMEOUT: "Request timeout",
    FailureKind.AUTH_ERROR: "API key error",
    FailureKind.NETWORK_ERROR: "Network error",
    FailureKind.QUOTA_EXCEEDED: "Quota exceeded",
    FailureKind.UNKNOWN: "Unknown error",
}


@dataclass(frozen=True)
class FailureRecord:
    """Classification of a single failed attempt."""
    kind: FailureKind
    retryable: bool
    retry_after_seconds: int | None = None
    suggestions: tuple[str, ...] = ()
    message: str = ""

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "label": self.kind.label,
            "retryable": self.retryable,
            "retry_after_seconds": self.retry_after_seconds,
            "suggestions": list(self.suggestions),
            "message": self.message,
        }


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_TERMINAL = "failed_terminal"
    BLOCKED = "blocked"


@dataclass
class StepContext:
    """Accumulated context handed to skip predicates, step bodies and fallbacks."""
    inputs: dict = field(default_factory=dict)
    results: dict = field(default_factory=dict)
    project_path: str = ""
    pipeline: str = ""

    def result(self, step_id: str, default: Any = None) -> Any:
        return self.results.get(step_id, default)


@dataclass(frozen=True)
class StepDescriptor:
    """Static definition of one unit of work."""
    id: str
    run: Callable[[StepContext], Any]
    name: str = ""
    depends_on: frozenset[str] = frozenset()
    required: bool = True
    retryable: bool = True
    skip: Callable[[StepContext], bool] | None = None
    allow_fallback: bool = True
    confidence: float = 0.9
    fallback_confidence: float = 0.5

    def __post_init__(self):
        # Accept any iterable of ids for convenience
        object.__setattr__(self, "depends_on", frozenset(self.depends_on))
        if not self.name:
            object.__setattr__(self, "name", self.id)


@dataclass
class PipelineState:
    """Durable snapshot of a run; written after every step attempt."""
    project_path: str = ""
    pipeline: str = ""
    current_step: str | None = None
    completed_steps: list[str] = field(default_factory=list)
    failed_step: str | None = None
    failure_kind: FailureKind | None = None
    failure_reason: str | None = None
    partial_results: dict[str, Any] = field(default_factory=dict)
    step_meta: dict[str, dict] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def is_completed(self, step_id: str) -> bool:
        return step_id in self.completed_steps

    def mark_completed(self, step_id: str, result: Any, *, confidence: float, fallback: bool) -> None:
        if step_id not in self.completed_steps:
            self.completed_steps.append(step_id)
        self.partial_results[step_id] = result
        self.step_meta[step_id] = {"confidence": confidence, "fallback": fallback}
        if self.failed_step == step_id:
            self.failed_step = None
            self.failure_kind = None
            self.failure_reason = None

    def mark_failed(self, step_id: str, failure: FailureRecord) -> None:
        self.failed_step = step_id
        self.failure_kind = failure.kind
        self.failure_reason = failure.kind.label

    @property
    def fallbacks_used(self) -> list[str]:
        return [sid for sid in self.completed_steps if self.step_meta.get(sid, {}).get("fallback")]


@dataclass
class PipelineResult:
    """Aggregate outcome of a run, returned even when fallbacks were used."""
    pipeline: str
    success: bool = False
    results: dict[str, Any] = field(default_factory=dict)
    completed_steps: list[str] = field(default_factory=list)
    cached_steps: list[str] = field(default_factory=list)
    skipped_steps: list[str] = field(default_factory=list)
    failed_steps: list[str] = field(default_factory=list)
    blocked_steps: list[str] = field(default_factory=list)
    fallbacks_used: list[str] = field(default_factory=list)
    confidence: dict[str, float] = field(default_factory=dict)
    failures: dict[str, dict] = field(default_factory=dict)
    total_retries: int = 0
    duration_sec: float = 0.0
    resumed: bool = False

    def to_dict(self) -> dict:
        return {
            "pipeline": self.pipeline,
            "success": self.success,
            "results": self.results,
            "completed_steps": list(self.completed_steps),
            "cached_steps": list(self.cached_steps),
            "skipped_steps": list(self.skipped_steps),
            "failed_steps": list(self.failed_steps),
            "blocked_steps": list(self.blocked_steps),
            "fallbacks_used": list(self.fallbacks_used),
            "confidence": dict(self.confidence),
            "failures": dict(self.failures),
            "total_retries": self.total_retries,
            "duration_sec": self.duration_sec,
            "resumed": self.resumed,
        }


@dataclass
class PipelineRequest:
    """What to run, as sent by the API, the CLI or a Temporal workflow."""
    pipeline: str
    project_path: str
    inputs: dict = field(default_factory=dict)
    resume: bool = False
    regenerate: bool = False
    run_id: str | None = None
