"""Canonical filesystem paths for pairflow configuration and state."""

from __future__ import annotations

import os
from pathlib import Path

PAIRFLOW_CONFIG_DIR = Path.home() / ".config" / "pairflow"

CONFIG_FILE = PAIRFLOW_CONFIG_DIR / "config.toml"

_env_history = os.environ.get("PAIRFLOW_HISTORY_PATH")
HISTORY_FILE = (
    Path(_env_history).expanduser() if _env_history else PAIRFLOW_CONFIG_DIR / "history"
)
