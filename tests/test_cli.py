"""CLI entry point: argument handling, exit codes and resume guidance."""

import threading
from unittest.mock import patch

import pytest

import cli
from features.checkpoints import JsonCheckpointStore
from models.schemas import PipelineState


@pytest.fixture(autouse=True)
def no_signal_handler():
    with patch("cli._install_cancel_handler", side_effect=threading.Event):
        yield


@pytest.fixture
def prd(tmp_path):
    path = tmp_path / "PRD.md"
    path.write_text("# Notes\n\n- Search feature across notes\n")
    return path


class TestDesign:

    def test_offline_run_exits_ok(self, tmp_path, prd, capsys):
        project = tmp_path / "app"
        assert cli.main(["design", str(project), "--prd", str(prd)]) == cli.EXIT_OK

        out = capsys.readouterr().out
        assert "status: completed" in out
        assert "fallbacks used: functional_summary" in out
        assert (project / ".phase-pilot" / "design-manifest.json").is_file()

    def test_resume_and_regenerate_are_exclusive(self, tmp_path, prd):
        with pytest.raises(SystemExit):
            cli.main(["design", str(tmp_path), "--prd", str(prd), "--resume", "--regenerate"])

    def test_prd_is_required(self, tmp_path):
        with pytest.raises(SystemExit):
            cli.main(["design", str(tmp_path)])


class TestBuildApp:

    def test_failure_prints_suggestions_and_exits_1(self, tmp_path, capsys):
        record = {
            "run_id": "run-x",
            "pipeline": "build-app",
            "status": "failed",
            "error": "Pipeline halted",
            "failed_step": "generate-types",
            "failure": {"label": "Rate limit exceeded", "suggestions": ["Wait 60 seconds"]},
            "result": {"completed_steps": ["project-setup"]},
        }
        with patch("cli.runner.execute_pipeline", return_value=record) as execute:
            code = cli.main(["build-app", str(tmp_path / "shop"), "--description", "A shop", "--with-tests"])

        assert code == cli.EXIT_FAILED
        request = execute.call_args.args[0]
        assert request.pipeline == "build-app"
        assert request.inputs["with_tests"] is True
        assert request.inputs["project_name"] == "shop"
        out = capsys.readouterr().out
        assert "Rate limit exceeded at step 'generate-types'" in out
        assert "Wait 60 seconds" in out
        assert "--resume" in out

    def test_cancelled_exits_130(self, tmp_path):
        record = {"run_id": "run-x", "pipeline": "build-app", "status": "cancelled", "result": None}
        with patch("cli.runner.execute_pipeline", return_value=record):
            assert cli.main(["build-app", str(tmp_path), "--description", "x"]) == cli.EXIT_CANCELLED

    def test_resume_flag_reaches_request(self, tmp_path):
        record = {"run_id": "run-x", "pipeline": "build-app", "status": "completed", "result": {}}
        with patch("cli.runner.execute_pipeline", return_value=record) as execute:
            cli.main(["build-app", str(tmp_path), "--description", "x", "--resume"])
        request = execute.call_args.args[0]
        assert request.resume is True
        assert request.regenerate is False


class TestCheckpointCommands:

    def test_status_without_state(self, tmp_path, capsys):
        assert cli.main(["status", str(tmp_path)]) == cli.EXIT_OK
        assert "No pipeline state found" in capsys.readouterr().out

    def test_clear(self, tmp_path, capsys):
        JsonCheckpointStore(tmp_path, "build-app").save(PipelineState(pipeline="build-app"))

        assert cli.main(["clear", str(tmp_path), "--pipeline", "build-app"]) == cli.EXIT_OK
        assert "Checkpoint cleared" in capsys.readouterr().out
        assert not JsonCheckpointStore(tmp_path, "build-app").path.exists()
