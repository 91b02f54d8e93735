"""Tests for the interactive loop and its history file."""

from __future__ import annotations

import stat
from unittest.mock import MagicMock

import pytest

from pairflow.config import Settings
from pairflow.errors import PairflowError, WorkflowAborted
from pairflow.repl import MAX_HISTORY_SIZE, add_history, load_history, run_repl, save_history


@pytest.fixture
def history_path(tmp_path):
    return tmp_path / "state" / "history"


def scripted(*lines):
    queue = list(lines)
    return lambda: queue.pop(0) if queue else None


def test_history_round_trip_keeps_order(history_path):
    save_history(history_path, ["first", "second"])
    assert load_history(history_path) == ["first", "second"]


def test_history_file_is_owner_only(history_path):
    save_history(history_path, ["secret request"])
    assert stat.S_IMODE(history_path.stat().st_mode) == 0o600


def test_history_capped(history_path):
    save_history(history_path, [f"r{i}" for i in range(MAX_HISTORY_SIZE + 20)])
    entries = load_history(history_path)
    assert len(entries) == MAX_HISTORY_SIZE
    assert entries[0] == "r20"


def test_missing_history_is_empty(history_path):
    assert load_history(history_path) == []


def test_add_history_skips_consecutive_duplicates():
    entries = ["a"]
    assert not add_history(entries, "a")
    assert add_history(entries, "b")
    assert add_history(entries, "a")
    assert entries == ["a", "b", "a"]


def test_requests_run_until_exit(history_path):
    runner = MagicMock()
    settings = Settings()
    run_repl(
        settings, history_path=history_path, reader=scripted("Add a flag", "  ", "exit", "never"),
        runner=runner,
    )
    runner.assert_called_once_with(settings, "Add a flag")
    assert load_history(history_path) == ["Add a flag"]


def test_eof_ends_loop(history_path):
    runner = MagicMock()
    run_repl(Settings(), history_path=history_path, reader=scripted(), runner=runner)
    runner.assert_not_called()


@pytest.mark.parametrize(
    "error", [WorkflowAborted("Workflow aborted."), PairflowError("boom"), KeyboardInterrupt()]
)
def test_failed_workflow_keeps_loop_alive(history_path, error, capsys):
    runner = MagicMock(side_effect=[error, None])
    run_repl(Settings(), history_path=history_path, reader=scripted("one", "two", "quit"), runner=runner)
    assert [call.args[1] for call in runner.call_args_list] == ["one", "two"]
    assert "Enter the next request." in capsys.readouterr().err


def test_options_line_is_printed(history_path, capsys):
    run_repl(Settings(), history_path=history_path, reader=scripted(), runner=MagicMock(),
             options_line="Options: dangerous")
    assert "Options: dangerous" in capsys.readouterr().err
