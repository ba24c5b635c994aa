"""
Checkpoint store — persists and reloads the PipelineState of a project.

One JSON file per (project, pipeline):
    <project>/.phase-pilot/<pipeline>-state.json

Writes replace the whole record through a temp file + os.replace, so a crash
mid-write leaves either the previous checkpoint or the new one, never a
half-written file. A missing or unreadable checkpoint is reported as "no
prior state" so a bad file can never crash a run.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

import config
from models.errors import CheckpointCorruptError, CheckpointError, CheckpointWriteError
from models.schemas import FailureKind, PipelineState

log = logging.getLogger(__name__)


class CheckpointStore(Protocol):
    def save(self, state: PipelineState) -> None: ...

    def load(self, strict: bool = False) -> PipelineState | None: ...

    def clear(self) -> None: ...


# ── Serialization ─────────────────────────────────────────────────────

def state_to_dict(state: PipelineState) -> dict:
    """Render a PipelineState in the on-disk (camelCase) layout."""
    return {
        "pipeline": state.pipeline,
        "currentStep": state.current_step,
        "completedSteps": list(state.completed_steps),
        "failedStep": state.failed_step,
        "failureKind": state.failure_kind.value if state.failure_kind else None,
        "failureReason": state.failure_reason,
        "partialResults": state.partial_results,
        "stepMeta": state.step_meta,
        "timestamp": state.timestamp.isoformat(),
        "projectPath": state.project_path,
    }


def state_from_dict(data: dict) -> PipelineState:
    """Parse the on-disk layout. Raises CheckpointCorruptError on bad structure."""
    if not isinstance(data, dict):
        raise CheckpointCorruptError("Checkpoint root is not an object")

    completed = data.get("completedSteps")
    if not isinstance(completed, list) or not all(isinstance(s, str) for s in completed):
        raise CheckpointCorruptError("completedSteps must be a list of step ids")

    partial = data.get("partialResults", {})
    if not isinstance(partial, dict):
        raise CheckpointCorruptError("partialResults must be an object")

    step_meta = data.get("stepMeta") or {}
    if not isinstance(step_meta, dict):
        raise CheckpointCorruptError("stepMeta must be an object")

    failed = data.get("failedStep")
    if failed is not None and not isinstance(failed, str):
        raise CheckpointCorruptError("failedStep must be a string")

    raw_kind = data.get("failureKind")
    try:
        failure_kind = FailureKind(raw_kind) if raw_kind else None
    except ValueError as e:
        raise CheckpointCorruptError(f"Unknown failureKind: {raw_kind!r}") from e

    try:
        timestamp = datetime.fromisoformat(data["timestamp"])
    except (KeyError, TypeError, ValueError) as e:
        raise CheckpointCorruptError("timestamp missing or not ISO-8601") from e
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)

    # Dedupe while keeping order; a completed step can never also be the failed one
    completed_steps = [s for i, s in enumerate(completed) if s not in completed[:i] and s != failed]

    # A completed step without a stored result cannot be reused
    missing = [s for s in completed_steps if s not in partial]
    if missing:
        raise CheckpointCorruptError(f"Completed steps without results: {', '.join(missing)}")

    return PipelineState(
        project_path=str(data.get("projectPath") or ""),
        pipeline=str(data.get("pipeline") or ""),
        current_step=data.get("currentStep"),
        completed_steps=completed_steps,
        failed_step=failed,
        failure_kind=failure_kind,
        failure_reason=data.get("failureReason"),
        partial_results=partial,
        step_meta=step_meta,
        timestamp=timestamp,
    )


# ── JSON file store ───────────────────────────────────────────────────

class JsonCheckpointStore:
    """Checkpoint file under the project directory."""

    def __init__(self, project_path: str | Path, pipeline: str):
        self.project_path = Path(project_path)
        self.pipeline = pipeline
        self.path = self.project_path / config.CHECKPOINT_DIRNAME / f"{pipeline}-state.json"

    def save(self, state: PipelineState) -> None:
        """
        Atomically replace the checkpoint with ``state``.

        Results must survive a save/load unchanged; anything JSON would alter
        (dates, tuples, non-string keys) raises CheckpointWriteError instead.
        """
        state.timestamp = datetime.now(timezone.utc)
        payload = state_to_dict(state)
        try:
            text = json.dumps(payload, indent=2)
        except (TypeError, ValueError) as e:
            raise CheckpointWriteError(f"Checkpoint for {self.pipeline} is not JSON-serializable: {e}") from e
        if json.loads(text) != payload:
            raise CheckpointWriteError(
                f"Checkpoint for {self.pipeline} would not load back unchanged "
                "(tuples, sets or non-string keys in a step result)"
            )
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent,
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(text)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise CheckpointWriteError(f"Failed to save checkpoint {self.path}: {e}") from e
        log.info(
            "Checkpoint saved (%s: %d completed, current=%s)",
            self.pipeline, len(state.completed_steps), state.current_step,
        )

    def load(self, strict: bool = False) -> PipelineState | None:
        """
        Load the checkpoint.

        Returns None when there is no checkpoint, or when it is unreadable and
        ``strict`` is False (the problem is logged and the run starts fresh).
        """
        if not self.path.exists():
            return None
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            return state_from_dict(data)
        # deeply nested input exhausts the decoder's recursion limit
        except (OSError, ValueError, RecursionError, CheckpointCorruptError) as e:
            if strict:
                if isinstance(e, CheckpointCorruptError):
                    raise
                raise CheckpointCorruptError(f"Unreadable checkpoint {self.path}: {e}") from e
            log.warning("Ignoring unreadable checkpoint %s: %s", self.path, e)
            return None

    def clear(self) -> None:
        if not self.path.exists():
            return
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise CheckpointError(f"Failed to clear checkpoint {self.path}: {e}") from e
        log.info("Checkpoint cleared: %s", self.path)

    # ── Inspection helpers ──

    def can_resume(self) -> bool:
        """True when a checkpoint exists and records progress or a failure."""
        state = self.load()
        return state is not None and bool(state.completed_steps or state.failed_step)

    def is_stale(self, max_age_hours: float | None = None) -> bool:
        state = self.load()
        if state is None:
            return False
        limit = config.CHECKPOINT_STALE_HOURS if max_age_hours is None else max_age_hours
        age = datetime.now(timezone.utc) - state.timestamp
        return age.total_seconds() > limit * 3600

    def summary(self, total_steps: int | None = None) -> str:
        """Human-readable progress line(s) for the status command."""
        state = self.load()
        if state is None:
            return "No pipeline state found"

        completed = len(state.completed_steps)
        if total_steps:
            progress = round(completed / total_steps * 100)
            text = f"Pipeline Progress: {completed}/{total_steps} steps ({progress}%)"
        else:
            text = f"Pipeline Progress: {completed} steps completed"

        if state.failed_step:
            text += f"\nLast failed: {state.failed_step} ({state.failure_reason or 'Unknown error'})"

        age = round((datetime.now(timezone.utc) - state.timestamp).total_seconds() / 60)
        text += f"\nState age: {age} minutes ago"
        return text


# ── In-memory store ───────────────────────────────────────────────────

class InMemoryCheckpointStore:
    """Same contract as JsonCheckpointStore, held in memory.

    Stores a deep copy so later mutation of the live state cannot leak into
    the saved snapshot.
    """

    def __init__(self, state: PipelineState | None = None):
        self._state = copy.deepcopy(state)
        self.saves = 0

    def save(self, state: PipelineState) -> None:
        state.timestamp = datetime.now(timezone.utc)
        self._state = copy.deepcopy(state)
        self.saves += 1

    def load(self, strict: bool = False) -> PipelineState | None:
        return copy.deepcopy(self._state)

    def clear(self) -> None:
        self._state = None
