"""Capability probe for the assistant CLIs.

Each selected backend's help text is checked for every flag the workflow
will pass it. Missing flags usually mean an outdated CLI.
"""

from __future__ import annotations

import logging
import os
import subprocess
from typing import Literal, TypedDict

from pairflow.backends import (
    BACKENDS,
    CLAUDE,
    GENERATE_CODE,
    GENERATE_PLAN,
    HELP_ARGS,
    JUDGE,
    REVIEW_CODE,
    REVIEW_PLAN,
    ClaudeBackend,
)
from pairflow.config import Settings
from pairflow.errors import ConfigError

log = logging.getLogger(__name__)

PROBE_TIMEOUT_SECONDS = 30

Status = Literal["pass", "warning", "fail"]
_STATUS_RANK: dict[Status, int] = {"pass": 0, "warning": 1, "fail": 2}


class _CheckFindingRequired(TypedDict):
    status: Status
    message: str


class CheckFinding(_CheckFindingRequired, total=False):
    details: dict[str, object]


class CheckReport(TypedDict):
    name: str
    status: Status
    summary: str
    findings: list[CheckFinding]


class DoctorReport(TypedDict):
    status: Status
    summary: str
    checks: list[CheckReport]
    streaming: bool


def _worst_status(statuses: list[Status]) -> Status:
    if not statuses:
        return "pass"
    return max(statuses, key=lambda s: _STATUS_RANK[s])


def _report_summary(checks: list[CheckReport]) -> str:
    counts: dict[Status, int] = {"pass": 0, "warning": 0, "fail": 0}
    for check in checks:
        counts[check["status"]] += 1
    return f"{counts['pass']} checks passed, {counts['warning']} warnings, {counts['fail']} failed."


def read_help(command: str, help_args: list[str], *, cwd: str | None = None) -> str:
    """Return combined stdout+stderr of the help command.

    Raises OSError or subprocess.TimeoutExpired when the binary cannot run.
    """
    env = dict(os.environ)
    env.pop("CLAUDECODE", None)
    result = subprocess.run(
        [command, *help_args],
        cwd=cwd,
        env=env,
        capture_output=True,
        text=True,
        timeout=PROBE_TIMEOUT_SECONDS,
    )
    return result.stdout + result.stderr


def missing_flags(help_text: str, required: list[str]) -> list[str]:
    return [flag for flag in required if flag not in help_text]


def operations_by_backend(settings: Settings) -> dict[str, list[str]]:
    """Which operations each selected backend will be asked to perform."""
    by_backend: dict[str, list[str]] = {}
    roles = (
        (settings.generator, (GENERATE_PLAN, GENERATE_CODE)),
        (settings.reviewer, (REVIEW_PLAN, REVIEW_CODE)),
        (settings.judge, (JUDGE,)),
    )
    for backend, operations in roles:
        by_backend.setdefault(backend, []).extend(operations)
    return by_backend


def _check_backend(
    name: str, operations: list[str], dangerous: bool, cwd: str | None
) -> CheckReport:
    required = BACKENDS[name].required_flags(operations, dangerous)
    command_line = " ".join([name, *HELP_ARGS[name]])
    try:
        help_text = read_help(name, HELP_ARGS[name], cwd=cwd)
    except FileNotFoundError:
        return {
            "name": name,
            "status": "fail",
            "summary": f"{name} not found on PATH.",
            "findings": [
                {
                    "status": "fail",
                    "message": f"{name} not found on PATH",
                    "details": {"backend": name, "missing_flags": required},
                }
            ],
        }
    except (OSError, subprocess.TimeoutExpired) as exc:
        return {
            "name": name,
            "status": "fail",
            "summary": f"`{command_line}` failed: {exc}",
            "findings": [
                {
                    "status": "fail",
                    "message": f"{command_line} failed: {exc}",
                    "details": {"backend": name, "missing_flags": required},
                }
            ],
        }

    missing = missing_flags(help_text, required)
    if missing:
        return {
            "name": name,
            "status": "fail",
            "summary": f"{name} does not support: {', '.join(missing)}",
            "findings": [
                {
                    "status": "fail",
                    "message": f"missing flag {flag}",
                    "details": {"backend": name, "flag": flag},
                }
                for flag in missing
            ],
        }
    return {
        "name": name,
        "status": "pass",
        "summary": f"{name} supports all {len(required)} required flags.",
        "findings": [
            {
                "status": "pass",
                "message": f"{name}: {', '.join(required)}",
                "details": {"backend": name, "operations": operations},
            }
        ],
    }


def _check_claude_streaming(cwd: str | None) -> CheckReport:
    required = ClaudeBackend.streaming_flags()
    try:
        missing = missing_flags(read_help(CLAUDE, HELP_ARGS[CLAUDE], cwd=cwd), required)
    except (OSError, subprocess.TimeoutExpired) as exc:
        log.debug("claude streaming probe failed: %s", exc)
        missing = required
    if missing:
        return {
            "name": "claude-streaming",
            "status": "warning",
            "summary": "Live streaming disabled for claude.",
            "findings": [
                {
                    "status": "warning",
                    "message": f"claude does not support: {', '.join(missing)}",
                    "details": {"missing_flags": missing},
                }
            ],
        }
    return {
        "name": "claude-streaming",
        "status": "pass",
        "summary": "claude supports live streaming.",
        "findings": [],
    }


def run_doctor(settings: Settings) -> DoctorReport:
    """Probe every selected backend, plus claude streaming when it is in use."""
    cwd = settings.cwd
    by_backend = operations_by_backend(settings)
    checks = [
        _check_backend(name, operations, settings.dangerous, cwd)
        for name, operations in by_backend.items()
    ]
    streaming = True
    if CLAUDE in by_backend and by_backend[CLAUDE] != [JUDGE]:
        streaming_check = _check_claude_streaming(cwd)
        checks.append(streaming_check)
        streaming = streaming_check["status"] == "pass"
    return {
        "status": _worst_status([check["status"] for check in checks]),
        "summary": _report_summary(checks),
        "checks": checks,
        "streaming": streaming,
    }


def ensure_capabilities(settings: Settings) -> bool:
    """Fail fast when a backend is unusable. Returns claude streaming support.

    Raises:
        ConfigError: listing every failing backend check.
    """
    report = run_doctor(settings)
    failures = [check["summary"] for check in report["checks"] if check["status"] == "fail"]
    if failures:
        raise ConfigError(
            "CLI compatibility check failed:\n"
            + "\n".join(failures)
            + "\n\nCheck the installed versions of the claude and codex CLIs."
        )
    return report["streaming"]
