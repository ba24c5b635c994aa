"""
FastAPI application — REST API for Phase Pilot.

Endpoints:
  POST   /pipeline/start          — Start a pipeline run (design | build-app)
  GET    /pipeline/{run_id}       — Get pipeline run status/results
  GET    /pipeline/runs           — List all pipeline runs
  GET    /checkpoint              — Inspect the resumable state of a project
  DELETE /checkpoint              — Discard the resumable state of a project
  GET    /beads/{run_id}          — Step beads of a run
  GET    /beads/{run_id}/summary  — Aggregate bead summary of a run
  GET    /health                  — Health check
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field
from temporalio.client import Client

import config
from features.beads import db as bead_db
from models.errors import PipelineConfigError
from models.schemas import PipelineRequest
from workflows import pipeline as runner

logging.basicConfig(
    level=config.LOG_LEVEL,
    format=config.LOG_FORMAT,
    datefmt="%H:%M:%S",
)
log = logging.getLogger(__name__)

temporal_client: Client | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global temporal_client
    if config.DATABASE_URL:
        try:
            bead_db.init_db()
            log.info("Postgres database initialized")
        except Exception as e:
            log.warning("Could not connect to Postgres: %s (runs will be logged to files only)", e)
    try:
        temporal_client = await Client.connect(config.TEMPORAL_HOST, namespace=config.TEMPORAL_NAMESPACE)
        log.info("Connected to Temporal at %s", config.TEMPORAL_HOST)
    except Exception as e:
        log.warning("Could not connect to Temporal: %s (pipelines will run in-process)", e)
        temporal_client = None
    yield


app = FastAPI(
    title="Phase Pilot",
    description="Resumable multi-step AI generation pipelines with checkpoints, retries and rule-based fallbacks",
    version="1.0.0",
    lifespan=lifespan,
)


class PipelineStartRequest(BaseModel):
    pipeline: str = "design"
    project_path: str
    inputs: dict[str, Any] = Field(default_factory=dict)
    resume: bool = False
    regenerate: bool = False


class PipelineStartResponse(BaseModel):
    run_id: str
    status: str
    message: str
    failed_step: str | None = None


# ── Health ────────────────────────────────────────────────────────────

@app.get("/health")
def health():
    return {
        "status": "ok",
        "service": "phase-pilot",
        "temporal_connected": temporal_client is not None,
        "pipelines": sorted(runner.PIPELINES),
    }


# ── Pipeline ──────────────────────────────────────────────────────────

def _check_target(pipeline: str, project_path: str) -> None:
    if pipeline not in runner.PIPELINES:
        raise HTTPException(status_code=400, detail=f"Unknown pipeline: {pipeline}")
    if not Path(project_path).is_dir():
        raise HTTPException(status_code=400, detail=f"Project directory not found: {project_path}")


@app.post("/pipeline/start", response_model=PipelineStartResponse)
async def start_pipeline(req: PipelineStartRequest):
    """Start a pipeline run against a project directory."""
    _check_target(req.pipeline, req.project_path)
    if req.resume and req.regenerate:
        raise HTTPException(status_code=400, detail="resume and regenerate are mutually exclusive")

    request = PipelineRequest(
        pipeline=req.pipeline,
        project_path=req.project_path,
        inputs=req.inputs,
        resume=req.resume,
        regenerate=req.regenerate,
        run_id=runner.new_run_id(),
    )

    if temporal_client:
        await temporal_client.start_workflow(
            runner.PhasePipelineWorkflow.run,
            request,
            id=request.run_id,
            task_queue=config.TEMPORAL_TASK_QUEUE,
        )
        return PipelineStartResponse(
            run_id=request.run_id,
            status="started",
            message=f"Pipeline started via Temporal. Workflow ID: {request.run_id}",
        )

    # Run in-process (no Temporal server)
    loop = asyncio.get_running_loop()
    record = await loop.run_in_executor(None, runner.execute_pipeline, request)
    return PipelineStartResponse(
        run_id=record["run_id"],
        status=record["status"],
        message=f"Pipeline ran in-process (no Temporal). Run ID: {record['run_id']}",
        failed_step=record.get("failed_step"),
    )


@app.get("/pipeline/runs")
async def list_pipeline_runs(status: str | None = None, limit: int = 50):
    """List all pipeline runs."""
    if config.DATABASE_URL:
        try:
            runs = bead_db.list_pipeline_runs(limit=limit, status=status)
            return {"runs": [_serialize(r) for r in runs]}
        except Exception as e:
            log.warning("Postgres unavailable, listing run logs instead: %s", e)

    runs = runner.list_run_logs()
    if status:
        runs = [r for r in runs if r["status"] == status]
    return {"runs": runs[:limit]}


@app.get("/pipeline/{run_id}")
async def get_pipeline_run(run_id: str):
    """Get the results of a pipeline run."""
    record = runner.load_run_log(run_id)
    if record is not None:
        return record

    if config.DATABASE_URL:
        try:
            row = bead_db.get_pipeline_run(run_id)
            if row:
                row["beads"] = bead_db.get_beads_for_run(run_id)
                row["bead_summary"] = bead_db.get_bead_summary(run_id)
                return _serialize(row)
        except Exception as e:
            log.warning("Postgres lookup failed for %s: %s", run_id, e)

    if temporal_client:
        try:
            handle = temporal_client.get_workflow_handle(run_id)
            desc = await handle.describe()
            result = None
            if desc.status.name == "COMPLETED":
                result = await handle.result()
            return {"run_id": run_id, "temporal_status": desc.status.name, "result": result}
        except Exception as e:
            raise HTTPException(status_code=404, detail=f"Run not found: {run_id}") from e

    raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")


# ── Checkpoints ───────────────────────────────────────────────────────

@app.get("/checkpoint")
async def get_checkpoint(project_path: str, pipeline: str = "design"):
    """Show what a resumed run would start from."""
    try:
        return runner.describe_checkpoint(project_path, pipeline)
    except PipelineConfigError as e:
        raise HTTPException(status_code=400, detail=e.message) from e


@app.delete("/checkpoint")
async def delete_checkpoint(project_path: str, pipeline: str = "design"):
    """Discard saved progress; the next run starts fresh."""
    try:
        cleared = runner.clear_checkpoint(project_path, pipeline)
    except PipelineConfigError as e:
        raise HTTPException(status_code=400, detail=e.message) from e
    return {"pipeline": pipeline, "project_path": project_path, "cleared": cleared}


# ── Bead query endpoints ──────────────────────────────────────────────

def _beads_from_log(run_id: str) -> list[dict]:
    record = runner.load_run_log(run_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")
    return record.get("beads", [])


@app.get("/beads/{run_id}")
async def get_beads(run_id: str, status: str | None = None):
    """Get all beads for a pipeline run, optionally filtered by status."""
    if config.DATABASE_URL:
        try:
            if status:
                beads = bead_db.get_beads_by_status(status, run_id=run_id)
            else:
                beads = bead_db.get_beads_for_run(run_id)
            return {"run_id": run_id, "beads": [_serialize(b) for b in beads], "count": len(beads)}
        except Exception as e:
            raise HTTPException(status_code=500, detail=f"Database error: {e}") from e

    beads = _beads_from_log(run_id)
    if status:
        beads = [b for b in beads if b.get("status") == status]
    return {"run_id": run_id, "beads": beads, "count": len(beads)}


@app.get("/beads/{run_id}/summary")
async def get_bead_summary(run_id: str):
    """Get an aggregate summary of beads for a run."""
    if config.DATABASE_URL:
        try:
            summary = bead_db.get_bead_summary(run_id)
            return {"run_id": run_id, **_serialize(summary)}
        except Exception as e:
            raise HTTPException(status_code=500, detail=f"Database error: {e}") from e

    record = runner.load_run_log(run_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")
    return {"run_id": run_id, **record.get("bead_summary", {})}


def _serialize(obj: Any) -> Any:
    """Make a dict JSON-serializable (handle datetimes, Decimals, etc)."""
    if isinstance(obj, dict):
        return {k: _serialize(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_serialize(v) for v in obj]
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    return obj
