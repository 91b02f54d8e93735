"""Workflow roles built on a backend and per-role session slots."""

from __future__ import annotations

import logging

from pairflow import prompts
from pairflow.backends import (
    GENERATE_CODE,
    GENERATE_PLAN,
    JUDGE,
    REVIEW_CODE,
    REVIEW_PLAN,
    Backend,
    BackendCallResult,
    OperationHints,
)
from pairflow.errors import TransportError
from pairflow.judge import ReviewJudgment, fail_safe_judgment, judge_text
from pairflow.sessions import CodeContext, PlanContext, RoleSession

log = logging.getLogger(__name__)

PREVIEW_CHARS = 200


def _preview(text: str, *, tail: bool = False) -> str:
    if len(text) <= PREVIEW_CHARS:
        return text
    return "..." + text[-PREVIEW_CHARS:] if tail else text[:PREVIEW_CHARS] + "..."


class Generator:
    """Plans and implements. One conversation spans plan and code generation."""

    def __init__(
        self, backend: Backend, *, dangerous: bool = False, require_session: bool = True
    ) -> None:
        self.backend = backend
        self.dangerous = dangerous
        self.session = RoleSession("generator", require_session=require_session)

    async def _call(self, prompt: str, operation: str) -> BackendCallResult:
        result = await self.backend.run(
            prompt,
            self.session.resume_id,
            OperationHints(operation, dangerous=self.dangerous),
        )
        result.raise_for_status(self.backend.name)
        self.session.record(result)
        return result

    async def generate_plan(self, prompt: str) -> str:
        result = await self._call(prompt, GENERATE_PLAN)
        if not result.response_text.strip():
            log.debug(
                "generate_plan returned no text: exit=%d stdout(%d)=%r stderr(%d)=%r",
                result.exit_code,
                len(result.stdout),
                _preview(result.stdout),
                len(result.stderr),
                _preview(result.stderr, tail=True),
            )
        return result.response_text

    async def generate_code(self, prompt: str) -> str:
        result = await self._call(prompt, GENERATE_CODE)
        return result.response_text


class Reviewer:
    """Read-only reviewer with independent plan and code conversations."""

    def __init__(self, backend: Backend, *, code_sandbox_mode: str | None = None) -> None:
        self.backend = backend
        self.code_sandbox_mode = code_sandbox_mode
        self.plan_session = RoleSession("plan reviewer", require_session=False)
        self.code_session = RoleSession("code reviewer", require_session=False)

    async def _call(
        self,
        session: RoleSession,
        prompt: str,
        hints: OperationHints,
        fallback: PlanContext | CodeContext | None,
    ) -> str:
        result = await self.backend.run(
            session.prepare(prompt, fallback), session.resume_id, hints
        )
        result.raise_for_status(self.backend.name)
        session.record(result)
        if not result.extraction_succeeded:
            log.info("No review text could be extracted; using raw %s output", self.backend.name)
            return result.stdout
        return result.response_text

    async def review_plan(self, prompt: str, fallback: PlanContext | None = None) -> str:
        return await self._call(
            self.plan_session, prompt, OperationHints(REVIEW_PLAN), fallback
        )

    async def review_code(self, prompt: str, fallback: CodeContext | None = None) -> str:
        hints = OperationHints(REVIEW_CODE, sandbox_mode=self.code_sandbox_mode)
        return await self._call(self.code_session, prompt, hints, fallback)


class Judge:
    """Classifies review text. Never resumes and never raises."""

    def __init__(self, backend: Backend) -> None:
        self.backend = backend

    async def judge_review(self, review_text: str) -> ReviewJudgment:
        try:
            result = await self.backend.run(
                prompts.review_judgment(review_text), None, OperationHints(JUDGE)
            )
        except TransportError as exc:
            log.error("Review judgment failed to run: %s", exc)
            return fail_safe_judgment()

        if not result.ok:
            log.error("Review judgment exited with code %d", result.exit_code)
            return fail_safe_judgment()
        if not result.extraction_succeeded:
            log.warning("No judgment text could be extracted; treating as blocking")
            return fail_safe_judgment()
        return judge_text(result.response_text)
