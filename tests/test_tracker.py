"""Bead tracking: lifecycle, summaries and best-effort persistence."""

from unittest.mock import patch

from features.beads.models import BeadOutcome, BeadStatus
from features.beads.tracker import BeadTracker
from helpers import Flaky, step
from models.schemas import PipelineState
from workflows.executor import StepExecutor
from workflows.fallback import FallbackStrategy


class TestLifecycle:

    def test_complete_records_outcome_and_duration(self):
        tracker = BeadTracker("run-1", "design", persist=False)
        bead = tracker.create("design_brief", "Design Brief")
        tracker.start(bead)
        tracker.attempt(bead)
        tracker.complete(bead, BeadOutcome.GENERATED, confidence=0.8)

        assert bead.status is BeadStatus.COMPLETED
        assert bead.outcome is BeadOutcome.GENERATED
        assert bead.confidence == 0.8
        assert bead.attempts == 1
        assert bead.duration_sec is not None
        assert bead.pipeline == "design"

    def test_name_defaults_to_step_id(self):
        assert BeadTracker("run-1", persist=False).create("compile-prd").name == "compile-prd"

    def test_attempt_errors_accumulate(self):
        tracker = BeadTracker("run-1", persist=False)
        bead = tracker.create("x")
        tracker.attempt(bead, error="timeout: slow")
        tracker.attempt(bead, error="timeout: slow again")
        assert bead.attempts == 2
        assert bead.attempt_errors == ["timeout: slow", "timeout: slow again"]

    def test_summary_counts_statuses_and_outcomes(self):
        tracker = BeadTracker("run-1", persist=False)
        done, reused, skipped, failed = (tracker.create(n) for n in ("a", "b", "c", "d"))
        tracker.complete(done, BeadOutcome.FALLBACK)
        tracker.complete(reused, BeadOutcome.CACHED)
        tracker.skip(skipped, reason="not needed")
        tracker.fail(failed, "boom", "unknown")

        summary = tracker.summary()
        assert summary["total_beads"] == 4
        assert summary["statuses"] == {"completed": 2, "skipped": 1, "failed": 1}
        assert summary["outcomes"] == {"fallback": 1, "cached": 1}

    def test_export_uses_plain_values(self):
        tracker = BeadTracker("run-1", persist=False)
        tracker.complete(tracker.create("a"), BeadOutcome.CACHED)
        exported = tracker.to_list()[0]
        assert exported["status"] == "completed"
        assert exported["outcome"] == "cached"
        assert exported["run_id"] == "run-1"


class TestPersistence:

    def test_persist_defaults_to_database_configured(self, monkeypatch):
        import config
        assert BeadTracker("r").persist is False
        monkeypatch.setattr(config, "DATABASE_URL", "postgresql://localhost/x")
        assert BeadTracker("r").persist is True

    def test_database_errors_do_not_break_tracking(self):
        tracker = BeadTracker("run-1", persist=True)
        with patch("features.beads.tracker.bead_db.upsert_bead", side_effect=RuntimeError("db down")):
            bead = tracker.create("x")
            tracker.complete(bead, BeadOutcome.GENERATED)
        assert bead.status is BeadStatus.COMPLETED

    def test_every_transition_is_written(self):
        with patch("features.beads.tracker.bead_db.upsert_bead") as upsert:
            tracker = BeadTracker("run-1", "design", persist=True)
            bead = tracker.create("a")
            tracker.start(bead)
            tracker.complete(bead, BeadOutcome.GENERATED)

        assert upsert.call_count == 3
        run_id, row = upsert.call_args.args
        assert run_id == "run-1"
        assert row["status"] == "completed"


class TestExecutorBeads:

    def test_one_bead_per_step_with_outcome(self, store, sleeps):
        """
        GIVEN a run with a generated step, a fallback step and a skipped step
        WHEN it completes
        THEN each step has exactly one bead describing how it finished
        """
        tracker = BeadTracker("run-1", persist=False)
        steps = [
            step("gen"),
            step("rule", Flaky("x", failures=99, error=TimeoutError())),
            step("opt", skip=lambda ctx: True),
        ]
        StepExecutor(
            steps, store, fallbacks=FallbackStrategy({"rule": lambda ctx: "r"}), sleep=sleeps, tracker=tracker,
        ).run()

        beads = {b.step_id: b for b in tracker.beads}
        assert len(tracker.beads) == 3
        assert beads["gen"].outcome is BeadOutcome.GENERATED
        assert beads["rule"].outcome is BeadOutcome.FALLBACK
        assert beads["rule"].attempts == 3
        assert beads["rule"].confidence == 0.5
        assert beads["opt"].status is BeadStatus.SKIPPED

    def test_cached_steps_get_a_cached_bead(self, store):
        state = PipelineState(pipeline="pipeline")
        state.mark_completed("a", "stored", confidence=0.9, fallback=False)
        store.save(state)

        tracker = BeadTracker("run-2", persist=False)
        StepExecutor([step("a")], store, tracker=tracker).run(resume=True)
        assert tracker.beads[0].outcome is BeadOutcome.CACHED

    def test_blocked_and_failed_beads_carry_failure_kind(self, store):
        tracker = BeadTracker("run-3", persist=False)
        steps = [
            step("extra", Flaky("x", failures=99, error=TimeoutError()), required=False, retryable=False),
            step("after", depends_on={"extra"}, required=False),
        ]
        StepExecutor(steps, store, tracker=tracker).run()

        failed, blocked = tracker.beads
        assert failed.status is BeadStatus.FAILED
        assert failed.failure_kind == "timeout"
        assert blocked.status is BeadStatus.BLOCKED
        assert blocked.failure_kind == "timeout"
        assert "extra" in blocked.error
