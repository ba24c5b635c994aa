"""
Step executor — runs step descriptors in dependency order with checkpointed
resume, bounded retry, failure classification and rule-based fallback.

Per step:
  1. already in the checkpoint's completed_steps → reuse the stored result
  2. skip predicate true → skipped (no result, dependents still run)
  3. run the body up to max_retries times, linear backoff between attempts,
     stop early on a non-retryable failure
  4. exhausted → fallback rule if the step allows one
  5. still failing: required → persist failure + abort; optional → record, go on
  6. every success path saves the checkpoint before the next step starts

Steps run strictly one at a time; each may read what earlier steps wrote.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable

import config
from features.beads.models import Bead, BeadOutcome
from features.beads.tracker import BeadTracker
from features.checkpoints.store import CheckpointStore
from models.errors import PipelineAbortedError, PipelineCancelledError
from models.schemas import (
    FailureRecord,
    PipelineResult,
    PipelineState,
    StepContext,
    StepDescriptor,
    StepStatus,
)
from utils.failures import classify
from workflows.fallback import FallbackStrategy
from workflows.resolver import resolve_order

log = logging.getLogger(__name__)


@dataclass
class _Outcome:
    ok: bool
    value: Any = None
    failure: FailureRecord | None = None


class StepExecutor:
    """Runs one pipeline definition against one checkpoint store."""

    def __init__(
        self,
        steps: Iterable[StepDescriptor],
        store: CheckpointStore,
        *,
        pipeline: str = "pipeline",
        fallbacks: FallbackStrategy | None = None,
        max_retries: int | None = None,
        base_delay_ms: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
        tracker: BeadTracker | None = None,
        classifier: Callable[[Any], FailureRecord] = classify,
    ):
        # Resolving here makes a bad graph fail before anything runs
        self.steps = resolve_order(list(steps))
        self.store = store
        self.pipeline = pipeline
        self.fallbacks = fallbacks or FallbackStrategy()
        self.max_retries = max(1, config.MAX_RETRIES if max_retries is None else max_retries)
        self.base_delay_ms = config.RETRY_BASE_DELAY_MS if base_delay_ms is None else base_delay_ms
        self.sleep = sleep
        self.tracker = tracker or BeadTracker(f"{pipeline}-local", pipeline, persist=False)
        self.classify = classifier
        self.statuses: dict[str, StepStatus] = {}

    @property
    def step_ids(self) -> list[str]:
        return [s.id for s in self.steps]

    def backoff_seconds(self, attempt: int) -> float:
        """Delay after failed attempt number ``attempt`` (1-based)."""
        return self.base_delay_ms * attempt / 1000

    # ── Run ───────────────────────────────────────────────────────────

    def run(
        self,
        inputs: dict | None = None,
        *,
        project_path: str = "",
        resume: bool = False,
        regenerate: bool = False,
        cancel_event: threading.Event | None = None,
    ) -> PipelineResult:
        started = time.monotonic()
        state = self._initial_state(project_path, resume=resume, regenerate=regenerate)
        result = PipelineResult(pipeline=self.pipeline, resumed=bool(state.completed_steps))
        context = StepContext(
            inputs=dict(inputs or {}),
            results={sid: state.partial_results[sid] for sid in state.completed_steps},
            project_path=project_path,
            pipeline=self.pipeline,
        )
        self.statuses = {
            s.id: StepStatus.COMPLETED if state.is_completed(s.id) else StepStatus.PENDING
            for s in self.steps
        }
        terminal: dict[str, FailureRecord] = {}

        log.info(
            "Pipeline %s starting: %d steps (%d cached)",
            self.pipeline, len(self.steps), len(state.completed_steps),
        )

        for step in self.steps:
            if cancel_event is not None and cancel_event.is_set():
                log.warning("Pipeline %s cancelled before step %s", self.pipeline, step.id)
                self._finish(result, context, started)
                raise PipelineCancelledError(step.id, state, result)

            state.current_step = step.id

            if state.is_completed(step.id):
                self._reuse(step, state, context, result)
                continue

            bead = self.tracker.create(step.id, step.name)

            blocking = sorted(dep for dep in step.depends_on if dep in terminal)
            if blocking:
                failure = terminal[blocking[0]]
                terminal[step.id] = failure
                self.statuses[step.id] = StepStatus.BLOCKED
                result.blocked_steps.append(step.id)
                self.tracker.block(bead, blocking, failure.kind.value)
                log.warning("[STEP] %s blocked by %s", step.id, ", ".join(blocking))
                if step.required:
                    self._abort(step, failure, state, result, context, started)
                continue

            if step.skip is not None and step.skip(context):
                self.statuses[step.id] = StepStatus.SKIPPED
                result.skipped_steps.append(step.id)
                self.tracker.skip(bead, reason="Skip predicate matched")
                continue

            self.tracker.start(bead)
            outcome = self._attempt(step, context, result, bead)

            if outcome.ok:
                self._complete(step, outcome.value, state, context, result, bead, fallback=False)
                continue

            failure = outcome.failure
            if step.allow_fallback and self.fallbacks.has(step.id):
                try:
                    value = self.fallbacks(step.id, context)
                except Exception as e:
                    log.error("[STEP] Fallback for %s failed: %s", step.id, e)
                else:
                    self._complete(step, value, state, context, result, bead, fallback=True)
                    continue

            terminal[step.id] = failure
            self.statuses[step.id] = StepStatus.FAILED_TERMINAL
            result.failures[step.id] = failure.to_dict()
            self.tracker.fail(bead, f"{failure.kind.label}: {failure.message}", failure.kind.value)

            if step.required:
                self._abort(step, failure, state, result, context, started)

            log.warning("[STEP] Optional step %s failed, continuing", step.id)
            result.failed_steps.append(step.id)
            self.store.save(state)

        self._finish(result, context, started)
        result.success = True
        if result.failed_steps or result.blocked_steps:
            # Keep the checkpoint so --resume retries only what failed
            self.store.save(state)
            log.warning(
                "Pipeline %s finished with failed optional steps: %s",
                self.pipeline, result.failed_steps + result.blocked_steps,
            )
        else:
            self.store.clear()
            log.info(
                "Pipeline %s completed in %.2fs (fallbacks: %s)",
                self.pipeline, result.duration_sec, result.fallbacks_used or "none",
            )
        return result

    # ── Internals ─────────────────────────────────────────────────────

    def _initial_state(self, project_path: str, *, resume: bool, regenerate: bool) -> PipelineState:
        if regenerate:
            self.store.clear()
            log.info("Regenerating %s: previous checkpoint discarded", self.pipeline)
        elif resume:
            loaded = self.store.load()
            if loaded is None:
                log.warning("No resumable state found for %s, starting fresh", self.pipeline)
            else:
                known = set(self.step_ids)
                stale = [sid for sid in loaded.completed_steps if sid not in known]
                if stale:
                    log.warning("Checkpoint lists unknown steps, ignoring: %s", stale)
                # partial_results keeps every stored result; only the completed list is filtered
                loaded.completed_steps = [sid for sid in loaded.completed_steps if sid in known]
                loaded.pipeline = self.pipeline
                loaded.project_path = project_path or loaded.project_path
                log.info(
                    "Resuming %s from %s (completed: %s)",
                    self.pipeline,
                    loaded.failed_step or loaded.current_step,
                    ", ".join(loaded.completed_steps) or "none",
                )
                return loaded
        return PipelineState(project_path=project_path, pipeline=self.pipeline)

    def _attempt(self, step: StepDescriptor, context: StepContext, result: PipelineResult, bead: Bead) -> _Outcome:
        max_attempts = self.max_retries if step.retryable else 1
        failure: FailureRecord | None = None

        for attempt in range(1, max_attempts + 1):
            self.statuses[step.id] = StepStatus.RUNNING
            if attempt > 1:
                result.total_retries += 1
                log.info("[STEP] Retry %d/%d for %s", attempt - 1, max_attempts - 1, step.id)
            try:
                value = step.run(context)
                if isinstance(value, BaseException):
                    raise value
            except Exception as e:
                failure = self.classify(e)
                self.statuses[step.id] = (
                    StepStatus.FAILED_RETRYABLE if failure.retryable else StepStatus.FAILED_TERMINAL
                )
                self.tracker.attempt(bead, error=f"{failure.kind.value}: {failure.message}")
                log.warning(
                    "[STEP] %s attempt %d/%d failed (%s, retryable=%s): %s",
                    step.id, attempt, max_attempts, failure.kind.value, failure.retryable, failure.message,
                )
                if not failure.retryable:
                    break
                if attempt < max_attempts:
                    self.sleep(self.backoff_seconds(attempt))
                continue

            self.tracker.attempt(bead)
            return _Outcome(ok=True, value=value)

        return _Outcome(ok=False, failure=failure)

    def _complete(
        self,
        step: StepDescriptor,
        value: Any,
        state: PipelineState,
        context: StepContext,
        result: PipelineResult,
        bead: Bead,
        *,
        fallback: bool,
    ) -> None:
        confidence = step.fallback_confidence if fallback else step.confidence
        state.mark_completed(step.id, value, confidence=confidence, fallback=fallback)
        self.store.save(state)

        context.results[step.id] = value
        self.statuses[step.id] = StepStatus.COMPLETED
        result.completed_steps.append(step.id)
        result.confidence[step.id] = confidence
        if fallback:
            result.fallbacks_used.append(step.id)
        self.tracker.complete(bead, BeadOutcome.FALLBACK if fallback else BeadOutcome.GENERATED, confidence)

    def _reuse(self, step: StepDescriptor, state: PipelineState, context: StepContext, result: PipelineResult) -> None:
        meta = state.step_meta.get(step.id, {})
        confidence = meta.get("confidence", step.confidence)
        fallback = bool(meta.get("fallback", False))

        context.results[step.id] = state.partial_results[step.id]
        self.store.save(state)

        result.completed_steps.append(step.id)
        result.cached_steps.append(step.id)
        result.confidence[step.id] = confidence
        if fallback:
            result.fallbacks_used.append(step.id)

        bead = self.tracker.create(step.id, step.name)
        self.tracker.complete(bead, BeadOutcome.CACHED, confidence)
        log.info("[STEP] %s: using cached result", step.id)

    def _abort(
        self,
        step: StepDescriptor,
        failure: FailureRecord,
        state: PipelineState,
        result: PipelineResult,
        context: StepContext,
        started: float,
    ) -> None:
        state.mark_failed(step.id, failure)
        self.store.save(state)
        self._finish(result, context, started)
        log.error(
            "Pipeline %s halted at %s: %s. Completed: %s",
            self.pipeline, step.id, failure.kind.label, ", ".join(state.completed_steps) or "none",
        )
        raise PipelineAbortedError(step.id, failure, state, result)

    def _finish(self, result: PipelineResult, context: StepContext, started: float) -> None:
        result.results = {sid: context.results[sid] for sid in result.completed_steps}
        result.duration_sec = round(time.monotonic() - started, 2)
