"""
Pipeline runner — runs a named pipeline against a project and records the run.

  design     PRD → 8-phase design manifest (activities.design)
  build-app  description → scaffolded application (activities.agent_workflow)

run_pipeline is a Temporal activity; PhasePipelineWorkflow wraps it in a
single activity call with no Temporal retries, because recovery is driven
by the checkpoint (resume) rather than by re-executing the activity. The
API falls back to calling execute_pipeline in-process when no Temporal
server is reachable, and the CLI always does.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from temporalio import activity, workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    import config
    from activities import agent_workflow, design
    from features.beads import db as bead_db
    from features.beads.tracker import BeadTracker
    from features.checkpoints.store import JsonCheckpointStore
    from models.errors import PilotError, PipelineAbortedError, PipelineCancelledError, PipelineConfigError
    from models.schemas import PipelineRequest, PipelineResult, StepDescriptor
    from workflows.executor import StepExecutor
    from workflows.fallback import FallbackStrategy

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineDefinition:
    name: str
    build_steps: Callable[[dict], list[StepDescriptor]]
    fallbacks: Callable[[], FallbackStrategy]
    finalize: Callable[[PipelineResult, PipelineRequest], dict] | None = None


def _finalize_design(result: PipelineResult, request: PipelineRequest) -> dict:
    manifest = design.build_manifest(result)
    path = design.save_manifest(request.project_path, manifest)
    return {"manifest_file": str(path), "manifest": manifest}


PIPELINES: dict[str, PipelineDefinition] = {
    design.PIPELINE_NAME: PipelineDefinition(
        design.PIPELINE_NAME,
        lambda inputs: design.build_design_steps(),
        design.design_fallbacks,
        _finalize_design,
    ),
    agent_workflow.PIPELINE_NAME: PipelineDefinition(
        agent_workflow.PIPELINE_NAME,
        agent_workflow.build_agent_steps,
        agent_workflow.agent_fallbacks,
    ),
}


def get_pipeline(name: str) -> PipelineDefinition:
    try:
        return PIPELINES[name]
    except KeyError:
        raise PipelineConfigError(
            f"Unknown pipeline '{name}'", {"available": sorted(PIPELINES)},
        ) from None


def new_run_id() -> str:
    return f"run-{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:6]}"


def describe_checkpoint(project_path: str, pipeline: str) -> dict:
    """What a resume of ``pipeline`` in ``project_path`` would start from."""
    definition = get_pipeline(pipeline)
    store = JsonCheckpointStore(project_path, definition.name)
    state = store.load()
    total = len(definition.build_steps({}))
    if state is None:
        return {"pipeline": pipeline, "exists": False, "summary": store.summary(total)}
    return {
        "pipeline": pipeline,
        "exists": True,
        "path": str(store.path),
        "can_resume": store.can_resume(),
        "stale": store.is_stale(),
        "completed_steps": state.completed_steps,
        "failed_step": state.failed_step,
        "failure_kind": state.failure_kind.value if state.failure_kind else None,
        "failure_reason": state.failure_reason,
        "timestamp": state.timestamp.isoformat(),
        "summary": store.summary(total),
    }


def clear_checkpoint(project_path: str, pipeline: str) -> bool:
    store = JsonCheckpointStore(project_path, get_pipeline(pipeline).name)
    existed = store.path.exists()
    store.clear()
    return existed


# ── Run ───────────────────────────────────────────────────────────────

def execute_pipeline(request: PipelineRequest, *, cancel_event: threading.Event | None = None) -> dict:
    """Run one pipeline and return its run record. Never raises for step failures."""
    run_id = request.run_id or new_run_id()
    tracker = BeadTracker(run_id, request.pipeline)
    record: dict = {
        "run_id": run_id,
        "pipeline": request.pipeline,
        "project_path": request.project_path,
        "started_at": datetime.now(timezone.utc).isoformat(),
        "status": "running",
        "mode": "regenerate" if request.regenerate else "resume" if request.resume else "fresh",
    }
    _persist_run(record)
    log.info("Pipeline %s (%s) starting for %s", run_id, request.pipeline, request.project_path)

    try:
        definition = get_pipeline(request.pipeline)
        executor = StepExecutor(
            definition.build_steps(request.inputs),
            JsonCheckpointStore(request.project_path, definition.name),
            pipeline=definition.name,
            fallbacks=definition.fallbacks(),
            tracker=tracker,
        )
        result = executor.run(
            request.inputs,
            project_path=request.project_path,
            resume=request.resume,
            regenerate=request.regenerate,
            cancel_event=cancel_event,
        )
        record["status"] = "completed"
        record["result"] = result.to_dict()
        if definition.finalize:
            record.update(definition.finalize(result, request))

    except PipelineAbortedError as e:
        record["status"] = "failed"
        record["error"] = e.message
        record["failed_step"] = e.step_id
        record["failure"] = e.failure.to_dict()
        record["result"] = e.result.to_dict() if e.result else None
        record["resume_hint"] = "Re-run with resume to continue from the failed step"

    except PipelineCancelledError as e:
        record["status"] = "cancelled"
        record["error"] = e.message
        record["result"] = e.result.to_dict() if e.result else None

    except PilotError as e:
        log.error("Pipeline %s failed: %s", run_id, e)
        record["status"] = "failed"
        record["error"] = e.message
        record["details"] = e.details

    except Exception as e:
        # Close the record before the error leaves the runner
        log.exception("Pipeline %s crashed", run_id)
        record["status"] = "failed"
        record["error"] = str(e) or type(e).__name__
        record["details"] = {"exception": type(e).__name__}
        _close_record(record, tracker)
        raise

    _close_record(record, tracker)
    log.info("Pipeline %s complete: %s", run_id, record["status"])
    return record


def _close_record(record: dict, tracker: BeadTracker) -> None:
    record["completed_at"] = datetime.now(timezone.utc).isoformat()
    record["duration_sec"] = (record.get("result") or {}).get("duration_sec")
    record["beads"] = tracker.to_list()
    record["bead_summary"] = tracker.summary()
    record["log_file"] = _save_run_log(record["run_id"], record)
    _persist_run(record)


@activity.defn
def run_pipeline(request: PipelineRequest) -> dict:
    """Temporal activity entry point."""
    return execute_pipeline(request)


@workflow.defn
class PhasePipelineWorkflow:
    """Runs one pipeline as a single, non-retried activity."""

    @workflow.run
    async def run(self, request: PipelineRequest) -> dict:
        return await workflow.execute_activity(
            run_pipeline,
            request,
            start_to_close_timeout=timedelta(hours=2),
            retry_policy=RetryPolicy(maximum_attempts=1),
        )


# ── Run records ───────────────────────────────────────────────────────

def _save_run_log(run_id: str, record: dict) -> str:
    """Save the pipeline run log to the pipeline_runs/ directory."""
    runs_dir = config.PIPELINE_RUNS_DIR
    runs_dir.mkdir(parents=True, exist_ok=True)
    file_path = runs_dir / f"{run_id}.json"
    with open(file_path, "w") as f:
        json.dump(record, f, indent=2, default=str)
    log.info("Run log saved: %s", file_path)
    return str(file_path)


def _persist_run(record: dict) -> None:
    if not config.DATABASE_URL:
        return
    try:
        bead_db.upsert_pipeline_run(record)
    except Exception as e:
        log.warning("Could not persist run %s to Postgres: %s", record.get("run_id"), e)


def load_run_log(run_id: str) -> dict | None:
    path = config.PIPELINE_RUNS_DIR / f"{run_id}.json"
    if not path.exists():
        return None
    with open(path) as f:
        return json.load(f)


def list_run_logs() -> list[dict]:
    runs = []
    if not config.PIPELINE_RUNS_DIR.exists():
        return runs
    for path in sorted(config.PIPELINE_RUNS_DIR.glob("*.json"), reverse=True):
        try:
            with open(path) as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            log.warning("Skipping unreadable run log %s: %s", path, e)
            continue
        runs.append({
            "run_id": data.get("run_id"),
            "pipeline": data.get("pipeline"),
            "status": data.get("status"),
            "started_at": data.get("started_at"),
            "duration_sec": data.get("duration_sec"),
            "failed_step": data.get("failed_step"),
        })
    return runs
