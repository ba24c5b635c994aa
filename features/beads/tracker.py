"""
Bead tracker — the execution history of one pipeline run.

The executor reports every step transition here (reuse from the
checkpoint, skip, attempt, fallback, failure). With DATABASE_URL set each
transition is also written to Postgres; a database error is logged and
the run carries on.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections import Counter
from datetime import datetime, timezone

import config
from features.beads import db as bead_db
from features.beads.models import Bead, BeadOutcome, BeadStatus

log = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class BeadTracker:

    def __init__(self, run_id: str, pipeline: str = "", persist: bool | None = None):
        self.run_id = run_id
        self.pipeline = pipeline
        self.persist = bool(config.DATABASE_URL) if persist is None else persist
        self.beads: list[Bead] = []
        self._clocks: dict[str, float] = {}

    def _save(self, bead: Bead) -> None:
        if not self.persist:
            return
        try:
            bead_db.upsert_bead(self.run_id, bead.to_dict())
        except Exception as e:
            log.warning("[BEAD] Could not persist %s (%s): %s", bead.id, bead.step_id, e)

    def _close(self, bead: Bead, status: BeadStatus) -> None:
        bead.status = status
        bead.completed_at = _now()
        started = self._clocks.pop(bead.id, None)
        if started is not None:
            bead.duration_sec = round(time.monotonic() - started, 2)
        self._save(bead)

    # ── Transitions ───────────────────────────────────────────────────

    def create(self, step_id: str, name: str = "") -> Bead:
        bead = Bead(
            id=f"bead-{uuid.uuid4().hex[:8]}",
            run_id=self.run_id,
            step_id=step_id,
            name=name or step_id,
            pipeline=self.pipeline,
        )
        self.beads.append(bead)
        self._save(bead)
        return bead

    def start(self, bead: Bead) -> None:
        bead.status = BeadStatus.RUNNING
        bead.started_at = _now()
        self._clocks[bead.id] = time.monotonic()
        log.debug("[BEAD] %s running", bead.step_id)
        self._save(bead)

    def attempt(self, bead: Bead, error: str | None = None) -> None:
        """Count one call of the step body; ``error`` describes a failed call."""
        bead.attempts += 1
        if error:
            bead.attempt_errors.append(error)
        self._save(bead)

    def complete(self, bead: Bead, outcome: BeadOutcome, confidence: float | None = None) -> None:
        bead.outcome = outcome
        bead.confidence = confidence
        self._close(bead, BeadStatus.COMPLETED)
        log.info("[BEAD] %s completed (%s, %.2fs)", bead.step_id, outcome.value, bead.duration_sec or 0)

    def fail(self, bead: Bead, error: str, failure_kind: str | None = None) -> None:
        bead.error = error
        bead.failure_kind = failure_kind
        self._close(bead, BeadStatus.FAILED)
        log.error("[BEAD] %s failed: %s", bead.step_id, error)

    def block(self, bead: Bead, blocking: list[str], failure_kind: str | None = None) -> None:
        bead.error = f"Blocked by failed dependency: {', '.join(blocking)}"
        bead.failure_kind = failure_kind
        self._close(bead, BeadStatus.BLOCKED)

    def skip(self, bead: Bead, reason: str = "") -> None:
        bead.note = reason
        self._close(bead, BeadStatus.SKIPPED)
        log.info("[BEAD] %s skipped: %s", bead.step_id, reason)

    # ── Export ────────────────────────────────────────────────────────

    def to_list(self) -> list[dict]:
        return [b.to_dict() for b in self.beads]

    def summary(self) -> dict:
        return {
            "run_id": self.run_id,
            "total_beads": len(self.beads),
            "statuses": dict(Counter(b.status.value for b in self.beads)),
            "outcomes": dict(Counter(b.outcome.value for b in self.beads if b.outcome)),
            "total_attempts": sum(b.attempts for b in self.beads),
            "total_duration_sec": round(sum(b.duration_sec or 0 for b in self.beads), 2),
        }
