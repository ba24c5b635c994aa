"""
Postgres audit trail — pipeline runs and the beads (step executions) inside them.

Tables:
  pipeline_runs  — one row per run, keyed by run_id
  beads          — one row per step execution, keyed by bead id, indexed by run_id

Rows are written on every state change. Nothing here is read back by the
executor: the checkpoint file decides what a resumed run skips, these
tables only answer "what happened". beads.run_id carries no foreign key:
a bead may be written before its run row.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

import psycopg2
import psycopg2.extras
from psycopg2 import sql
from psycopg2.extras import Json

import config

log = logging.getLogger(__name__)

_conn: Any = None


def _connection():
    """Return the shared autocommit connection, reconnecting if it was closed."""
    global _conn
    if _conn is None or _conn.closed:
        _conn = psycopg2.connect(config.DATABASE_URL)
        _conn.autocommit = True
    return _conn


@contextmanager
def cursor() -> Iterator[Any]:
    cur = _connection().cursor(cursor_factory=psycopg2.extras.RealDictCursor)
    try:
        yield cur
    finally:
        cur.close()


# ── Schema ────────────────────────────────────────────────────────────

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS pipeline_runs (
    run_id          TEXT PRIMARY KEY,
    pipeline        TEXT NOT NULL,
    project_path    TEXT NOT NULL,
    mode            TEXT NOT NULL DEFAULT 'fresh',
    status          TEXT NOT NULL DEFAULT 'running',
    resumed         BOOLEAN NOT NULL DEFAULT false,
    started_at      TIMESTAMPTZ,
    completed_at    TIMESTAMPTZ,
    duration_sec    DOUBLE PRECISION,
    failed_step     TEXT,
    failure_kind    TEXT,
    error           TEXT,
    steps           JSONB NOT NULL DEFAULT '{}'::jsonb,
    confidence      JSONB NOT NULL DEFAULT '{}'::jsonb,
    log_file        TEXT,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS beads (
    id              TEXT PRIMARY KEY,
    run_id          TEXT NOT NULL,
    step_id         TEXT NOT NULL,
    name            TEXT NOT NULL,
    pipeline        TEXT NOT NULL,
    status          TEXT NOT NULL,
    outcome         TEXT,
    confidence      DOUBLE PRECISION,
    attempts        INTEGER NOT NULL DEFAULT 0,
    attempt_errors  JSONB NOT NULL DEFAULT '[]'::jsonb,
    failure_kind    TEXT,
    error           TEXT,
    note            TEXT NOT NULL DEFAULT '',
    started_at      TIMESTAMPTZ,
    completed_at    TIMESTAMPTZ,
    duration_sec    DOUBLE PRECISION,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at      TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_beads_run ON beads(run_id, created_at);
CREATE INDEX IF NOT EXISTS idx_beads_step ON beads(pipeline, step_id);
CREATE INDEX IF NOT EXISTS idx_runs_project ON pipeline_runs(project_path, pipeline);
CREATE INDEX IF NOT EXISTS idx_runs_status ON pipeline_runs(status);
"""


def init_db() -> None:
    with cursor() as cur:
        cur.execute(SCHEMA_SQL)
    log.info("Database schema initialized")


def _upsert(
    table: str,
    key: str,
    row: dict,
    immutable: tuple[str, ...] = (),
    touch: str | None = None,
) -> None:
    """INSERT ... ON CONFLICT (key) DO UPDATE every column except key and ``immutable``.

    ``touch`` names a timestamp column set to now() on update.
    """
    columns = list(row)
    updates = [
        sql.SQL("{c} = EXCLUDED.{c}").format(c=sql.Identifier(c))
        for c in columns if c != key and c not in immutable
    ]
    if touch:
        updates.append(sql.SQL("{c} = now()").format(c=sql.Identifier(touch)))
    query = sql.SQL("INSERT INTO {table} ({cols}) VALUES ({vals}) ON CONFLICT ({key}) DO UPDATE SET {sets}").format(
        table=sql.Identifier(table),
        cols=sql.SQL(", ").join(map(sql.Identifier, columns)),
        vals=sql.SQL(", ").join(map(sql.Placeholder, columns)),
        key=sql.Identifier(key),
        sets=sql.SQL(", ").join(updates),
    )
    with cursor() as cur:
        cur.execute(query, row)


# ── Runs ──────────────────────────────────────────────────────────────

def run_row(record: dict) -> dict:
    """Flatten a run record (as built by the pipeline runner) into a pipeline_runs row."""
    result = record.get("result") or {}
    failure = record.get("failure") or {}
    return {
        "run_id": record["run_id"],
        "pipeline": record.get("pipeline", ""),
        "project_path": record.get("project_path", ""),
        "mode": record.get("mode", "fresh"),
        "status": record.get("status", "running"),
        "resumed": bool(result.get("resumed", False)),
        "started_at": record.get("started_at"),
        "completed_at": record.get("completed_at"),
        "duration_sec": record.get("duration_sec"),
        "failed_step": record.get("failed_step"),
        "failure_kind": failure.get("kind"),
        "error": record.get("error"),
        "steps": Json({
            name: result.get(name, [])
            for name in ("completed_steps", "cached_steps", "skipped_steps",
                         "failed_steps", "blocked_steps", "fallbacks_used")
        }),
        "confidence": Json(result.get("confidence", {})),
        "log_file": record.get("log_file"),
    }


def upsert_pipeline_run(record: dict) -> None:
    _upsert("pipeline_runs", "run_id", run_row(record), immutable=("pipeline", "project_path", "started_at"))


def get_pipeline_run(run_id: str) -> dict | None:
    with cursor() as cur:
        cur.execute("SELECT * FROM pipeline_runs WHERE run_id = %s", (run_id,))
        row = cur.fetchone()
        return dict(row) if row else None


def list_pipeline_runs(limit: int = 50, status: str | None = None) -> list[dict]:
    """Newest first."""
    query = "SELECT * FROM pipeline_runs"
    params: list[Any] = []
    if status:
        query += " WHERE status = %s"
        params.append(status)
    query += " ORDER BY created_at DESC LIMIT %s"
    params.append(limit)
    with cursor() as cur:
        cur.execute(query, params)
        return [dict(row) for row in cur.fetchall()]


# ── Beads ─────────────────────────────────────────────────────────────

def bead_row(bead: dict) -> dict:
    """Map an exported Bead (Bead.to_dict) onto the beads table."""
    return {
        "id": bead["id"],
        "run_id": bead["run_id"],
        "step_id": bead.get("step_id", ""),
        "name": bead.get("name", ""),
        "pipeline": bead.get("pipeline", ""),
        "status": bead.get("status", "pending"),
        "outcome": bead.get("outcome"),
        "confidence": bead.get("confidence"),
        "attempts": bead.get("attempts", 0),
        "attempt_errors": Json(bead.get("attempt_errors") or []),
        "failure_kind": bead.get("failure_kind"),
        "error": bead.get("error"),
        "note": bead.get("note", ""),
        "started_at": bead.get("started_at"),
        "completed_at": bead.get("completed_at"),
        "duration_sec": bead.get("duration_sec"),
    }


def upsert_bead(run_id: str, bead: dict) -> None:
    _upsert(
        "beads", "id", bead_row({**bead, "run_id": run_id}),
        immutable=("run_id", "step_id", "name", "pipeline"), touch="updated_at",
    )


def get_beads_for_run(run_id: str) -> list[dict]:
    with cursor() as cur:
        cur.execute("SELECT * FROM beads WHERE run_id = %s ORDER BY created_at", (run_id,))
        return [dict(row) for row in cur.fetchall()]


def get_beads_by_status(status: str, run_id: str) -> list[dict]:
    with cursor() as cur:
        cur.execute(
            "SELECT * FROM beads WHERE run_id = %s AND status = %s ORDER BY created_at",
            (run_id, status),
        )
        return [dict(row) for row in cur.fetchall()]


def get_bead_summary(run_id: str) -> dict:
    """Bead counts per status, per outcome and per failure kind for one run."""
    with cursor() as cur:
        cur.execute("""
            SELECT count(*) AS total_beads,
                   coalesce(sum(attempts), 0) AS total_attempts,
                   coalesce(sum(duration_sec), 0) AS total_duration_sec
            FROM beads WHERE run_id = %s
        """, (run_id,))
        summary = dict(cur.fetchone() or {})
        cur.execute(
            "SELECT status, count(*) AS n FROM beads WHERE run_id = %s GROUP BY status",
            (run_id,),
        )
        summary["statuses"] = {row["status"]: row["n"] for row in cur.fetchall()}
        cur.execute(
            "SELECT outcome, count(*) AS n FROM beads WHERE run_id = %s AND outcome IS NOT NULL GROUP BY outcome",
            (run_id,),
        )
        summary["outcomes"] = {row["outcome"]: row["n"] for row in cur.fetchall()}
        cur.execute("""
            SELECT failure_kind, count(*) AS n FROM beads
            WHERE run_id = %s AND failure_kind IS NOT NULL GROUP BY failure_kind
        """, (run_id,))
        summary["failure_kinds"] = {row["failure_kind"]: row["n"] for row in cur.fetchall()}
    return summary
