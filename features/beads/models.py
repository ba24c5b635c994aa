"""
Bead models — one bead per step per run.

status says where the step ended up; outcome says where a completed
step's result came from.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum


class BeadStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"
    SKIPPED = "skipped"


class BeadOutcome(str, Enum):
    GENERATED = "generated"
    FALLBACK = "fallback"
    CACHED = "cached"


@dataclass
class Bead:
    id: str
    run_id: str
    step_id: str
    name: str
    pipeline: str
    status: BeadStatus = BeadStatus.PENDING
    outcome: BeadOutcome | None = None
    confidence: float | None = None
    attempts: int = 0
    attempt_errors: list[str] = field(default_factory=list)
    failure_kind: str | None = None
    error: str | None = None
    note: str = ""
    started_at: str | None = None
    completed_at: str | None = None
    duration_sec: float | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        data["outcome"] = self.outcome.value if self.outcome else None
        return data
