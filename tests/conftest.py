"""Shared fixtures: isolated config, checkpoint store and a sleep recorder."""

from __future__ import annotations

import pytest

import config
from features.checkpoints.store import InMemoryCheckpointStore


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """No API keys, no database, run logs under tmp_path."""
    monkeypatch.setattr(config, "OPENAI_API_KEY", "")
    monkeypatch.setattr(config, "XAI_API_KEY", "")
    monkeypatch.setattr(config, "DATABASE_URL", "")
    monkeypatch.setattr(config, "PIPELINE_RUNS_DIR", tmp_path / "runs")
    monkeypatch.setattr(config, "MAX_RETRIES", 3)
    monkeypatch.setattr(config, "RETRY_BASE_DELAY_MS", 1000)


class SleepRecorder(list):
    def __call__(self, seconds: float) -> None:
        self.append(seconds)


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def store():
    return InMemoryCheckpointStore()
