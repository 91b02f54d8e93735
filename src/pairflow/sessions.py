"""Per-role conversation continuity.

Each workflow role owns one :class:`RoleSession`. The first successful call
either fixes the session id for the rest of the run or, when none comes
back, moves the role into fallback mode where every later prompt carries a
synthesized "history so far" block instead of a resume directive.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from pairflow.backends import BackendCallResult
from pairflow.errors import SessionRequiredError

log = logging.getLogger(__name__)

UNSET = "unset"
FIXED = "fixed"
FALLBACK = "fallback"

SUMMARY_CHARS = 500


def summarize(text: str, limit: int = SUMMARY_CHARS) -> str:
    return text[:limit]


@dataclass(frozen=True)
class PlanContext:
    """What the plan reviewer has seen so far."""

    plan_summary: str
    review_summary: str

    @classmethod
    def from_texts(cls, plan: str, review: str) -> PlanContext:
        return cls(summarize(plan), summarize(review))

    def render(self) -> str:
        return (
            "## History so far\n\n"
            f"### Plan summary\n{self.plan_summary}\n\n"
            f"### Review summary\n{self.review_summary}"
        )


@dataclass(frozen=True)
class CodeContext:
    """What the code reviewer has seen so far."""

    diff_summary: str
    review_summary: str

    @classmethod
    def from_texts(cls, diff: str, review: str) -> CodeContext:
        return cls(summarize(diff), summarize(review))

    def render(self) -> str:
        return (
            "## History so far\n\n"
            f"### Previous diff summary\n{self.diff_summary}\n\n"
            f"### Previous review summary\n{self.review_summary}"
        )


FallbackContext = PlanContext | CodeContext


class RoleSession:
    """Session slot for one role: unset -> fixed(id) | fallback, never back."""

    def __init__(self, role: str, *, require_session: bool) -> None:
        self.role = role
        self.require_session = require_session
        self.state = UNSET
        self.session_id: str | None = None

    def __repr__(self) -> str:
        return f"RoleSession({self.role!r}, state={self.state!r}, session_id={self.session_id!r})"

    @property
    def resume_id(self) -> str | None:
        return self.session_id if self.state == FIXED else None

    @property
    def in_fallback(self) -> bool:
        return self.state == FALLBACK

    def prepare(self, prompt: str, context: FallbackContext | None = None) -> str:
        """Return the prompt to send, prefixed with *context* in fallback mode."""
        if self.state == FALLBACK and context is not None:
            return f"{context.render()}\n\n{prompt}"
        return prompt

    def record(self, result: BackendCallResult) -> None:
        """Update the slot from a call that already passed its transport check.

        Only the first successful call is consulted; later session ids are
        ignored even when they differ.

        Raises:
            SessionRequiredError: the role needs continuity and got no id.
        """
        if self.state != UNSET or not result.ok:
            return
        if result.session_id:
            self.state = FIXED
            self.session_id = result.session_id
            log.debug("%s session fixed: %s", self.role, result.session_id)
        elif self.require_session:
            raise SessionRequiredError(self.role)
        else:
            self.state = FALLBACK
            log.warning(
                "No session id returned for %s; continuing with summarized context",
                self.role,
            )
