"""Shared test fixtures."""

import json
import logging

import pytest

from pairflow.config import ENV_VARS


@pytest.fixture(autouse=True)
def _reset_pairflow_logger():
    """Undo CLI logging setup so caplog sees pairflow records in every test."""
    yield
    logger = logging.getLogger("pairflow")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture(autouse=True)
def _clean_pairflow_env(monkeypatch):
    """Keep the developer's PAIRFLOW_* settings out of every test."""
    for var in ENV_VARS.values():
        monkeypatch.delenv(var, raising=False)
    monkeypatch.delenv("CLAUDECODE", raising=False)


@pytest.fixture
def jsonl():
    """Render events as line-delimited JSON, one object per line."""

    def render(*events: dict) -> str:
        return "".join(json.dumps(event) + "\n" for event in events)

    return render
