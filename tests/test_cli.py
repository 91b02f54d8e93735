"""Tests for the click entry point."""

from __future__ import annotations

import json
import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from pairflow.cli import configure_logging, main
from pairflow.errors import PairflowError, TransportError, WorkflowAborted
from pairflow.workflow import WorkflowOutcome


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def workflow_cls():
    """Patch Workflow so `run PROMPT` never touches a backend."""
    instance = MagicMock()
    instance.run = AsyncMock(return_value=WorkflowOutcome("completed", "plan"))
    cls = MagicMock(return_value=instance)
    with patch("pairflow.workflow.Workflow", cls):
        yield cls


def test_help_lists_commands(runner):
    result = runner.invoke(main, ["--help"])
    assert result.exit_code == 0
    assert "run" in result.output
    assert "doctor" in result.output


def test_unknown_command_suggests(runner):
    result = runner.invoke(main, ["doctr"])
    assert result.exit_code == 2
    assert "Did you mean: doctor?" in result.output


def test_run_prompt_builds_settings(runner, workflow_cls, tmp_path):
    result = runner.invoke(
        main,
        [
            "run", "Add a flag", "--max-plan-iterations", "2", "--reviewer", "claude",
            "--dangerous", "--cwd", str(tmp_path),
        ],
    )
    assert result.exit_code == 0, result.output
    settings = workflow_cls.call_args.args[0]
    assert settings.max_plan_iterations == 2
    assert settings.reviewer == "claude"
    assert settings.dangerous is True
    assert settings.cwd == str(tmp_path)
    workflow_cls.return_value.run.assert_awaited_once_with("Add a flag")
    assert "Options: reviewer=claude, max_plan_iterations=2, dangerous" in result.output


def test_run_plan_only_message(runner, workflow_cls):
    workflow_cls.return_value.run.return_value = WorkflowOutcome("plan_only", "plan")
    result = runner.invoke(main, ["run", "x", "--plan-only"])
    assert result.exit_code == 0
    assert "skipping code generation" in result.output
    assert workflow_cls.call_args.args[0].plan_only is True


@pytest.mark.parametrize(
    ("error", "code", "text"),
    [
        (TransportError("codex exited with code 2", stderr="boom"), 1, "Error: codex exited"),
        (PairflowError("Plan generation returned an empty response"), 1, "Error: Plan generation"),
        (WorkflowAborted("Workflow aborted."), 1, "Workflow aborted."),
        (WorkflowAborted(interrupted=True), 130, "Interrupted."),
    ],
)
def test_run_errors_map_to_exit_codes(runner, workflow_cls, error, code, text):
    workflow_cls.return_value.run.side_effect = error
    result = runner.invoke(main, ["run", "x"])
    assert result.exit_code == code
    assert text in result.output


def test_invalid_env_value_is_reported(runner, monkeypatch):
    monkeypatch.setenv("PAIRFLOW_CODEX_SANDBOX", "everything")
    result = runner.invoke(main, ["run", "x"])
    assert result.exit_code == 1
    assert "Error: Invalid sandbox mode" in result.output


def test_run_without_prompt_starts_repl(runner):
    with patch("pairflow.repl.run_repl") as run_repl:
        result = runner.invoke(main, ["run", "--codex-model", "gpt-x"])
    assert result.exit_code == 0
    settings = run_repl.call_args.args[0]
    assert settings.codex_model == "gpt-x"
    assert run_repl.call_args.kwargs["options_line"] == "Options: codex_model=gpt-x"


def test_doctor_prints_json(runner):
    report = {"status": "pass", "summary": "2 checks passed", "checks": [], "streaming": True}
    with patch("pairflow.doctor.run_doctor", return_value=report) as run_doctor:
        result = runner.invoke(main, ["doctor", "--generator", "codex"])
    assert result.exit_code == 0
    assert json.loads(result.output) == report
    assert run_doctor.call_args.args[0].generator == "codex"


def test_doctor_failure_exits_non_zero(runner):
    report = {"status": "fail", "summary": "1 failed", "checks": [], "streaming": True}
    with patch("pairflow.doctor.run_doctor", return_value=report):
        result = runner.invoke(main, ["doctor"])
    assert result.exit_code == 1
    assert "Doctor checks failed." in result.output


@pytest.mark.parametrize(
    ("verbose", "debug", "level"),
    [(False, False, logging.WARNING), (True, False, logging.INFO), (False, True, logging.DEBUG)],
)
def test_configure_logging_levels(verbose, debug, level):
    configure_logging(verbose=verbose, debug=debug)
    logger = logging.getLogger("pairflow")
    assert logger.level == level
    assert len(logger.handlers) == 1
    configure_logging(verbose=verbose, debug=debug)
    assert len(logger.handlers) == 1
