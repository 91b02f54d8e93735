"""Exception taxonomy shared by the protocol layer and the workflow driver.

Decode problems never surface as exceptions: malformed lines are dropped by
the line buffer and a missing answer is reported through
``BackendCallResult.extraction_succeeded``. Everything that does surface
derives from :class:`PairflowError`.
"""

from __future__ import annotations


class PairflowError(Exception):
    """Base class for all pairflow failures."""


class TransportError(PairflowError):
    """The backend process failed: non-zero exit, failure to start, or timeout."""

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        stderr: str = "",
        timed_out: bool = False,
    ) -> None:
        self.exit_code = exit_code
        self.stderr = stderr
        self.timed_out = timed_out
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        if self.stderr.strip():
            return f"{base}\n{self.stderr.rstrip()}"
        return base


class SessionRequiredError(PairflowError):
    """A role that needs conversation continuity got no session id back."""

    def __init__(self, role: str) -> None:
        self.role = role
        super().__init__(
            f"No session id could be recovered for the {role} role. "
            "The workflow needs a resumable conversation for this role and cannot continue."
        )


class WorkflowAborted(PairflowError):
    """The user stopped the workflow at an approval gate or interrupted input."""

    def __init__(self, message: str = "Workflow aborted.", *, interrupted: bool = False) -> None:
        self.interrupted = interrupted
        super().__init__(message)


class ConfigError(PairflowError):
    """A configuration value is invalid or a backend binary is unusable."""
