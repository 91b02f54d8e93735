"""Run settings: built-in defaults, user TOML file, environment, CLI options.

Precedence is:
1) explicit overrides (command-line options)
2) environment variables (``PAIRFLOW_*``)
3) ``[defaults]`` table of ``~/.config/pairflow/config.toml``
4) built-in defaults
"""

from __future__ import annotations

import logging
import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from pairflow.backends import BACKEND_NAMES, CLAUDE, CODEX, SANDBOX_MODES
from pairflow.errors import ConfigError
from pairflow.paths import CONFIG_FILE
from pairflow.runner import DEFAULT_TIMEOUT_SECONDS

log = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 10

ENV_VARS: dict[str, str] = {
    "generator": "PAIRFLOW_GENERATOR",
    "reviewer": "PAIRFLOW_REVIEWER",
    "judge": "PAIRFLOW_JUDGE",
    "claude_model": "PAIRFLOW_CLAUDE_MODEL",
    "codex_model": "PAIRFLOW_CODEX_MODEL",
    "codex_sandbox": "PAIRFLOW_CODEX_SANDBOX",
    "max_plan_iterations": "PAIRFLOW_MAX_PLAN_ITERATIONS",
    "max_code_iterations": "PAIRFLOW_MAX_CODE_ITERATIONS",
    "timeout": "PAIRFLOW_TIMEOUT",
}

_BACKEND_KEYS = ("generator", "reviewer", "judge")
_INT_KEYS = ("max_plan_iterations", "max_code_iterations")
_BOOL_KEYS = ("dangerous", "plan_only", "verbose", "debug")


@dataclass
class Settings:
    generator: str = CLAUDE
    reviewer: str = CODEX
    judge: str = CLAUDE
    claude_model: str | None = None
    codex_model: str | None = None
    codex_sandbox: str = "workspace-write"
    max_plan_iterations: int = DEFAULT_MAX_ITERATIONS
    max_code_iterations: int = DEFAULT_MAX_ITERATIONS
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    dangerous: bool = False
    plan_only: bool = False
    verbose: bool = False
    debug: bool = False
    cwd: str = "."

    @property
    def streaming(self) -> bool:
        return self.verbose or self.debug

    def model_for(self, backend: str) -> str | None:
        return self.claude_model if backend == CLAUDE else self.codex_model

    def non_default_summary(self) -> str:
        """One line naming every setting that differs from its default."""
        defaults = Settings()
        parts = []
        for f in fields(self):
            if f.name == "cwd":
                continue
            value = getattr(self, f.name)
            if value != getattr(defaults, f.name):
                parts.append(f.name if value is True else f"{f.name}={value}")
        return ", ".join(parts)


def _read_toml_defaults(path: Path) -> dict[str, Any]:
    """Return the ``[defaults]`` table, or {} when the file is absent or broken."""
    try:
        with path.open("rb") as handle:
            raw = tomllib.load(handle)
    except FileNotFoundError:
        return {}
    except (OSError, tomllib.TOMLDecodeError) as exc:
        log.warning("Ignoring unreadable config file %s: %s", path, exc)
        return {}
    defaults = raw.get("defaults", {})
    if not isinstance(defaults, dict):
        log.warning("Ignoring [defaults] in %s: not a table", path)
        return {}
    return defaults


def _coerce(key: str, value: Any, source: str) -> Any:
    if key in _INT_KEYS:
        try:
            number = int(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{key} must be an integer (got {value!r} from {source})") from None
        if number < 1:
            raise ConfigError(f"{key} must be at least 1 (got {number} from {source})")
        return number
    if key == "timeout":
        try:
            seconds = float(value)
        except (TypeError, ValueError):
            raise ConfigError(f"timeout must be a number (got {value!r} from {source})") from None
        if seconds <= 0:
            raise ConfigError(f"timeout must be positive (got {seconds:g} from {source})")
        return seconds
    if key in _BACKEND_KEYS:
        name = str(value).strip().lower()
        if name not in BACKEND_NAMES:
            raise ConfigError(
                f"Unknown {key} backend {value!r} from {source}. "
                f"Expected one of: {', '.join(BACKEND_NAMES)}"
            )
        return name
    if key == "codex_sandbox":
        if value not in SANDBOX_MODES:
            raise ConfigError(
                f"Invalid sandbox mode {value!r} from {source}. "
                f"Expected one of: {', '.join(SANDBOX_MODES)}"
            )
        return value
    if key in _BOOL_KEYS:
        if not isinstance(value, bool):
            raise ConfigError(f"{key} must be true or false (got {value!r} from {source})")
        return value
    if key in ("claude_model", "codex_model"):
        return str(value) or None
    return value


def load_settings(
    overrides: Mapping[str, Any] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    config_path: Path | None = None,
) -> Settings:
    """Resolve settings from every layer. ``None`` overrides are ignored.

    Raises:
        ConfigError: a value from any layer is invalid.
    """
    env = os.environ if env is None else env
    known = {f.name for f in fields(Settings)}

    file_defaults = _read_toml_defaults(config_path or CONFIG_FILE)
    for key in file_defaults:
        if key not in known:
            log.warning("Unknown setting %r in config file", key)

    resolved: dict[str, Any] = {}
    for key, value in file_defaults.items():
        if key in known:
            resolved[key] = _coerce(key, value, "config file")
    for key, var in ENV_VARS.items():
        raw = env.get(var)
        if raw is not None and raw.strip():
            resolved[key] = _coerce(key, raw.strip(), var)
    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if key not in known:
            raise ConfigError(f"Unknown setting: {key}")
        resolved[key] = _coerce(key, value, "command line")

    settings = Settings(**resolved)
    if settings.debug:
        settings.verbose = True
    return settings
