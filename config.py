"""
Configuration — loads settings from environment / .env file.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Paths
PROJECT_ROOT = Path(__file__).parent
PIPELINE_RUNS_DIR = Path(os.getenv("PIPELINE_RUNS_DIR", str(PROJECT_ROOT / "pipeline_runs")))
CHECKPOINT_DIRNAME = os.getenv("CHECKPOINT_DIRNAME", ".phase-pilot")

# Generators (OpenAI-compatible endpoints, tried in this order)
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4.1")
XAI_API_KEY = os.getenv("XAI_API_KEY", "")
XAI_MODEL = os.getenv("XAI_MODEL", "grok-3")
XAI_BASE_URL = os.getenv("XAI_BASE_URL", "https://api.x.ai/v1")
GENERATOR_TIMEOUT_SEC = float(os.getenv("GENERATOR_TIMEOUT_SEC", "120"))

# Temporal
TEMPORAL_HOST = os.getenv("TEMPORAL_HOST", "localhost:7233")
TEMPORAL_TASK_QUEUE = "phase-pilot-queue"
TEMPORAL_NAMESPACE = "default"

# Postgres audit trail (beads + runs); empty disables persistence
DATABASE_URL = os.getenv("DATABASE_URL", "")

# Executor
MAX_RETRIES = int(os.getenv("MAX_RETRIES", "3"))
RETRY_BASE_DELAY_MS = int(os.getenv("RETRY_BASE_DELAY_MS", "1000"))

# Checkpoints older than this are reported as stale
CHECKPOINT_STALE_HOURS = float(os.getenv("CHECKPOINT_STALE_HOURS", "24"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
