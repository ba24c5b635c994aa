"""
Step executor behavior: resume, bounded retry, fallback, containment,
skip predicates, cancellation and checkpoint discipline.
"""

import threading
from datetime import date

import pytest

from features.checkpoints import InMemoryCheckpointStore, JsonCheckpointStore
from helpers import Flaky, RateLimited, Unauthorized, step
from models.errors import CheckpointWriteError, PipelineAbortedError, PipelineCancelledError
from models.schemas import FailureKind, PipelineState, StepStatus
from workflows.executor import StepExecutor
from workflows.fallback import FallbackStrategy


def executor(steps, store, sleeps=None, **kwargs):
    sleep = sleeps if sleeps is not None else (lambda s: None)
    return StepExecutor(steps, store, pipeline="test", sleep=sleep, **kwargs)


class TestHappyPath:

    def test_runs_all_steps_in_order_and_clears_checkpoint(self, store):
        seen = []
        steps = [
            step("a", lambda ctx: seen.append("a") or 1),
            step("b", lambda ctx: seen.append("b") or ctx.result("a") + 1, depends_on={"a"}),
        ]
        result = executor(steps, store).run()

        assert seen == ["a", "b"]
        assert result.success
        assert result.results == {"a": 1, "b": 2}
        assert result.completed_steps == ["a", "b"]
        assert store.load() is None

    def test_checkpoint_saved_after_every_step(self, store):
        observed = []

        def check_b(ctx):
            observed.append(list(store.load().completed_steps))
            return "b"

        executor([step("a"), step("b", check_b, depends_on={"a"})], store).run()
        assert observed == [["a"]]

    def test_inputs_and_project_path_reach_steps(self, store):
        run = lambda ctx: (ctx.inputs["prd"], ctx.project_path, ctx.pipeline)
        result = executor([step("a", run)], store).run({"prd": "# Notes"}, project_path="/p")
        assert result.results["a"] == ("# Notes", "/p", "test")

    def test_confidence_recorded_per_step(self, store):
        result = executor([step("a", confidence=0.8)], store).run()
        assert result.confidence == {"a": 0.8}


class TestResume:

    def test_completed_steps_are_not_rerun(self, store):
        """
        GIVEN a checkpoint with a and b completed
        WHEN run with resume
        THEN a and b bodies are never called and their cached results are reused
        """
        state = PipelineState(pipeline="test")
        state.mark_completed("a", "cached-a", confidence=0.9, fallback=False)
        state.mark_completed("b", "cached-b", confidence=0.5, fallback=True)
        store.save(state)

        a, b = Flaky("new-a"), Flaky("new-b")
        c = Flaky("c")
        steps = [step("a", a), step("b", b, depends_on={"a"}), step("c", c, depends_on={"b"})]
        result = executor(steps, store).run(resume=True)

        assert (a.calls, b.calls, c.calls) == (0, 0, 1)
        assert result.results == {"a": "cached-a", "b": "cached-b", "c": "c"}
        assert result.cached_steps == ["a", "b"]
        assert result.fallbacks_used == ["b"]
        assert result.confidence["b"] == 0.5
        assert result.resumed

    def test_cached_results_visible_to_later_steps(self, store):
        state = PipelineState(pipeline="test")
        state.mark_completed("a", {"app_name": "Notes"}, confidence=0.9, fallback=False)
        store.save(state)

        steps = [step("a"), step("b", lambda ctx: ctx.result("a")["app_name"].upper(), depends_on={"a"})]
        assert executor(steps, store).run(resume=True).results["b"] == "NOTES"

    def test_resume_without_checkpoint_starts_fresh(self, store):
        a = Flaky("a")
        result = executor([step("a", a)], store).run(resume=True)
        assert a.calls == 1
        assert not result.resumed

    def test_corrupt_checkpoint_starts_fresh(self, tmp_path):
        store = JsonCheckpointStore(tmp_path, "test")
        store.path.parent.mkdir(parents=True)
        store.path.write_text("{garbage")

        a = Flaky("a")
        result = executor([step("a", a)], store).run(resume=True, project_path=str(tmp_path))
        assert a.calls == 1
        assert result.success

    def test_no_resume_flag_ignores_checkpoint(self, store):
        state = PipelineState(pipeline="test")
        state.mark_completed("a", "old", confidence=0.9, fallback=False)
        store.save(state)

        a = Flaky("new")
        assert executor([step("a", a)], store).run().results["a"] == "new"
        assert a.calls == 1

    def test_regenerate_discards_checkpoint(self, store):
        state = PipelineState(pipeline="test")
        state.mark_completed("a", "old", confidence=0.9, fallback=False)
        store.save(state)

        a = Flaky("new")
        result = executor([step("a", a)], store).run(resume=False, regenerate=True)
        assert a.calls == 1
        assert result.results["a"] == "new"

    def test_unknown_completed_ids_are_ignored(self, store):
        state = PipelineState(pipeline="test")
        state.mark_completed("renamed-step", "x", confidence=0.9, fallback=False)
        store.save(state)

        result = executor([step("a")], store).run(resume=True)
        assert result.completed_steps == ["a"]
        assert result.cached_steps == []


class TestRetry:

    def test_bounded_retry_then_fallback_once(self, store, sleeps):
        """
        GIVEN a step that always hits a rate limit and has a fallback
        WHEN run with max_retries=3
        THEN the generator is called exactly 3 times, the fallback once,
        and the step completes with fallback_used recorded
        """
        body = Flaky("never", failures=99, error=RateLimited("429"))
        fallback_calls = []
        fallbacks = FallbackStrategy({"a": lambda ctx: fallback_calls.append(1) or "rule"})

        result = executor([step("a", body)], store, sleeps, fallbacks=fallbacks).run()

        assert body.calls == 3
        assert len(fallback_calls) == 1
        assert result.results["a"] == "rule"
        assert result.fallbacks_used == ["a"]
        assert result.confidence["a"] == 0.5
        assert result.total_retries == 2

    def test_linear_backoff_between_attempts(self, store, sleeps):
        body = Flaky("ok", failures=2, error=TimeoutError())
        executor([step("a", body)], store, sleeps, base_delay_ms=1000).run()
        assert sleeps == [1.0, 2.0]
        assert body.calls == 3

    def test_success_on_second_attempt(self, store, sleeps):
        body = Flaky("ok", failures=1, error=ConnectionError())
        result = executor([step("a", body)], store, sleeps).run()
        assert result.results["a"] == "ok"
        assert result.fallbacks_used == []
        assert sleeps == [1.0]

    def test_non_retryable_failure_stops_immediately(self, store, sleeps):
        body = Flaky("never", failures=99, error=Unauthorized("bad key"))
        fallbacks = FallbackStrategy({"a": lambda ctx: "rule"})
        result = executor([step("a", body)], store, sleeps, fallbacks=fallbacks).run()

        assert body.calls == 1
        assert sleeps == []
        assert result.fallbacks_used == ["a"]

    def test_non_retryable_step_gets_one_attempt(self, store, sleeps):
        body = Flaky("ok", failures=1, error=TimeoutError())
        fallbacks = FallbackStrategy({"a": lambda ctx: "rule"})
        executor([step("a", body, retryable=False)], store, sleeps, fallbacks=fallbacks).run()
        assert body.calls == 1

    def test_returned_exception_counts_as_failure(self, store, sleeps):
        fallbacks = FallbackStrategy({"a": lambda ctx: "rule"})
        result = executor([step("a", lambda ctx: TimeoutError("slow"))], store, sleeps, fallbacks=fallbacks).run()
        assert result.results["a"] == "rule"
        assert len(sleeps) == 2

    @pytest.mark.parametrize("error, status", [
        (Unauthorized("bad key"), StepStatus.FAILED_TERMINAL),
        (TimeoutError("slow"), StepStatus.FAILED_RETRYABLE),
    ])
    def test_failed_attempt_status_follows_retryability(self, store, error, status):
        seen = {}
        ex = executor(
            [step("a", Flaky("never", failures=99, error=error))],
            store,
            fallbacks=FallbackStrategy({"a": lambda ctx: seen.setdefault("a", ex.statuses["a"].value)}),
        )
        ex.run()
        assert seen["a"] == status.value

    def test_fallback_not_used_when_disallowed(self, store):
        fallbacks = FallbackStrategy({"a": lambda ctx: "rule"})
        body = Flaky("never", failures=99)
        with pytest.raises(PipelineAbortedError):
            executor([step("a", body, allow_fallback=False)], store, fallbacks=fallbacks).run()


class TestAbort:

    def test_required_failure_persists_state_and_raises(self, store, sleeps):
        """
        GIVEN a required step that fails with a 429 on every attempt and has no fallback
        WHEN the run is executed
        THEN PipelineAbortedError carries the failure, and the checkpoint keeps
        earlier results plus failed_step and failure_kind
        """
        steps = [step("a"), step("b", Flaky("x", failures=99, error=RateLimited()), depends_on={"a"})]
        with pytest.raises(PipelineAbortedError) as exc:
            executor(steps, store, sleeps).run()

        assert exc.value.step_id == "b"
        assert exc.value.failure.kind is FailureKind.RATE_LIMIT
        assert exc.value.failure.retry_after_seconds == 60
        saved = store.load()
        assert saved.completed_steps == ["a"]
        assert saved.partial_results == {"a": "a-result"}
        assert saved.failed_step == "b"
        assert saved.failure_kind is FailureKind.RATE_LIMIT
        assert saved.failure_reason == "Rate limit exceeded"

    def test_failing_fallback_is_terminal(self, store):
        def broken(ctx):
            raise ValueError("rule bug")

        fallbacks = FallbackStrategy({"a": broken})
        with pytest.raises(PipelineAbortedError) as exc:
            executor([step("a", Flaky("x", failures=99))], store, fallbacks=fallbacks).run()
        assert exc.value.step_id == "a"

    def test_checkpoint_write_failure_aborts(self):
        class BrokenStore(InMemoryCheckpointStore):
            def save(self, state):
                raise CheckpointWriteError("read-only filesystem")

        b = Flaky("b")
        with pytest.raises(CheckpointWriteError):
            executor([step("a"), step("b", b, depends_on={"a"})], BrokenStore()).run()
        assert b.calls == 0

    def test_result_that_cannot_be_checkpointed_aborts(self, tmp_path):
        """
        GIVEN a step whose result holds a date
        WHEN it completes against the JSON checkpoint
        THEN the save fails loudly and dependents never run
        """
        b = Flaky("b")
        steps = [step("a", lambda ctx: {"when": date(2024, 1, 2)}), step("b", b, depends_on={"a"})]
        with pytest.raises(CheckpointWriteError):
            executor(steps, JsonCheckpointStore(tmp_path, "test")).run(project_path=str(tmp_path))
        assert b.calls == 0


class TestOptionalSteps:

    def test_optional_failure_is_contained(self, store):
        """
        GIVEN an optional step that fails terminally and an independent later step
        WHEN the run is executed
        THEN the run succeeds, the failure is reported, and the later step runs
        """
        later = Flaky("later")
        steps = [
            step("setup"),
            step("extra", Flaky("x", failures=99), depends_on={"setup"}, required=False),
            step("main", later, depends_on={"setup"}),
        ]
        result = executor(steps, store).run()

        assert result.success
        assert result.failed_steps == ["extra"]
        assert result.failures["extra"]["kind"] == "unknown"
        assert later.calls == 1
        assert "extra" not in result.results

    def test_checkpoint_kept_for_retry_of_failed_optional_steps(self, store):
        steps = [step("a"), step("extra", Flaky("x", failures=99), required=False)]
        executor(steps, store).run()
        assert store.load().completed_steps == ["a"]

    def test_dependent_of_failed_optional_step_is_blocked(self, store):
        dependent = Flaky("d")
        steps = [
            step("extra", Flaky("x", failures=99), required=False),
            step("after-extra", dependent, depends_on={"extra"}, required=False),
        ]
        ex = executor(steps, store)
        result = ex.run()

        assert dependent.calls == 0
        assert result.blocked_steps == ["after-extra"]
        assert ex.statuses["after-extra"] is StepStatus.BLOCKED

    def test_required_dependent_of_failed_optional_step_aborts(self, store):
        steps = [
            step("extra", Flaky("x", failures=99, error=Unauthorized()), required=False),
            step("needs-extra", depends_on={"extra"}),
        ]
        with pytest.raises(PipelineAbortedError) as exc:
            executor(steps, store).run()
        assert exc.value.step_id == "needs-extra"
        assert exc.value.failure.kind is FailureKind.AUTH_ERROR


class TestSkip:

    def test_skipped_step_has_no_result_and_dependents_run(self, store):
        """
        GIVEN a skip predicate that is true
        WHEN the run is executed
        THEN the body is never called, the step is not completed, and its dependent still runs
        """
        body = Flaky("never")
        predicate_calls = []
        steps = [
            step("optional-input", body, skip=lambda ctx: predicate_calls.append(1) or True),
            step("next", depends_on={"optional-input"}),
        ]
        result = executor(steps, store).run()

        assert body.calls == 0
        assert len(predicate_calls) == 1
        assert result.skipped_steps == ["optional-input"]
        assert "optional-input" not in result.completed_steps
        assert result.results == {"next": "next-result"}

    def test_skip_predicate_sees_inputs(self, store):
        steps = [step("review", skip=lambda ctx: not ctx.inputs.get("interactive"))]
        assert executor(steps, store).run({"interactive": True}).completed_steps == ["review"]
        assert executor(steps, store).run({"interactive": False}).skipped_steps == ["review"]


class TestCancellation:

    def test_cancel_stops_at_next_step_boundary(self, store):
        cancel = threading.Event()

        def first(ctx):
            cancel.set()
            return "done"

        second = Flaky("never")
        with pytest.raises(PipelineCancelledError) as exc:
            executor([step("a", first), step("b", second, depends_on={"a"})], store).run(cancel_event=cancel)

        assert exc.value.next_step == "b"
        assert second.calls == 0
        assert store.load().completed_steps == ["a"]


class TestKillAndResume:

    PHASES = [
        "functional_summary", "project_scope", "context_gaps", "design_brief",
        "visual_system", "component_hierarchy", "implementation_plan", "design_intent",
    ]

    def build(self, bodies):
        steps, previous = [], None
        for phase in self.PHASES:
            steps.append(step(phase, bodies[phase], depends_on={previous} if previous else ()))
            previous = phase
        return steps

    def test_eight_phase_pipeline_resumes_after_failure(self, tmp_path, sleeps):
        """
        GIVEN an 8-phase linear pipeline whose phase 5 keeps timing out and has no fallback
        WHEN it is run, then the problem is fixed and it is resumed
        THEN the first run halts at phase 5 with phases 1-4 saved, and the
        resumed run calls only phases 5-8 and returns all 8 results
        """
        store = JsonCheckpointStore(tmp_path, "design")
        bodies = {p: Flaky(f"{p}-v1") for p in self.PHASES}
        bodies["visual_system"] = Flaky("never", failures=99, error=TimeoutError())

        with pytest.raises(PipelineAbortedError) as exc:
            executor(self.build(bodies), store, sleeps).run(project_path=str(tmp_path))

        assert exc.value.step_id == "visual_system"
        saved = store.load()
        assert saved.completed_steps == self.PHASES[:4]
        assert saved.failed_step == "visual_system"
        assert saved.failure_kind is FailureKind.TIMEOUT
        assert bodies["visual_system"].calls == 3

        fixed = {p: Flaky(f"{p}-v2") for p in self.PHASES}
        result = executor(self.build(fixed), store, sleeps).run(project_path=str(tmp_path), resume=True)

        assert [p for p in self.PHASES if fixed[p].calls] == self.PHASES[4:]
        assert result.cached_steps == self.PHASES[:4]
        assert result.results == {
            **{p: f"{p}-v1" for p in self.PHASES[:4]},
            **{p: f"{p}-v2" for p in self.PHASES[4:]},
        }
        assert not store.path.exists()

    def test_resume_is_idempotent_after_full_success(self, store):
        bodies = {p: Flaky(p) for p in self.PHASES}
        first = executor(self.build(bodies), store).run()
        second = executor(self.build(bodies), store).run(resume=True)

        assert first.results == second.results
        assert all(b.calls == 2 for b in bodies.values())
