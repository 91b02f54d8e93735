"""Plan -> review -> approve -> code -> review workflow driver.

The driver owns every piece of cross-call state: the current plan, the
previous review texts used for fallback context, and (through the roles)
the per-role session slots. Calls run strictly one after another.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Literal, TypeVar

import click

from pairflow import git_ops, prompts
from pairflow.backends import CLAUDE, BackendConfig, create_backend
from pairflow.config import Settings
from pairflow.doctor import ensure_capabilities
from pairflow.errors import PairflowError, WorkflowAborted
from pairflow.interaction import Interaction
from pairflow.judge import ReviewJudgment, format_concerns
from pairflow.roles import Generator, Judge, Reviewer
from pairflow.sessions import CodeContext, PlanContext

log = logging.getLogger(__name__)

T = TypeVar("T")

PAYLOAD_PREVIEW_CHARS = 1000
SEPARATOR = "-" * 60

OutcomeStatus = Literal["completed", "plan_only"]


@dataclass(frozen=True)
class WorkflowOutcome:
    status: OutcomeStatus
    plan: str


@dataclass
class Roles:
    generator: Generator
    reviewer: Reviewer
    judge: Judge


def _write_stderr(chunk: str) -> None:
    click.echo(chunk, nl=False, err=True)


def build_roles(settings: Settings, *, claude_streaming: bool = True) -> Roles:
    """Create one backend per role from *settings*."""

    def config_for(backend: str) -> BackendConfig:
        streaming = settings.streaming and (backend != CLAUDE or claude_streaming)
        return BackendConfig(
            cwd=settings.cwd,
            model=settings.model_for(backend),
            streaming=streaming,
            on_text=_write_stderr if streaming else None,
            on_stderr=_write_stderr if settings.debug else None,
            timeout=settings.timeout,
        )

    def backend(name: str):
        return create_backend(name, config_for(name))

    return Roles(
        generator=Generator(backend(settings.generator), dangerous=settings.dangerous),
        reviewer=Reviewer(backend(settings.reviewer), code_sandbox_mode=settings.codex_sandbox),
        judge=Judge(backend(settings.judge)),
    )


def log_payload(title: str, text: str) -> None:
    """Log a large text: in full at debug level, truncated at info level."""
    if log.isEnabledFor(logging.DEBUG):
        log.debug("%s:\n%s", title, text)
    elif len(text) > PAYLOAD_PREVIEW_CHARS:
        log.info("%s (%d chars):\n%s\n...", title, len(text), text[:PAYLOAD_PREVIEW_CHARS])
    else:
        log.info("%s:\n%s", title, text)


class Workflow:
    def __init__(
        self,
        settings: Settings,
        interaction: Interaction,
        *,
        roles: Roles | None = None,
        probe: Callable[[Settings], bool] = ensure_capabilities,
    ) -> None:
        self.settings = settings
        self.ui = interaction
        self.roles = roles
        self.probe = probe

    # -- Helpers ----------------------------------------------------------------

    async def _step(self, label: str, call: Awaitable[T]) -> T:
        progress = (
            contextlib.nullcontext() if self.settings.streaming else self.ui.progress(label)
        )
        async with progress:
            return await call

    def _banner(self, text: str) -> None:
        self.ui.show(SEPARATOR)
        self.ui.show(text)

    def _show_judgment(self, judgment: ReviewJudgment) -> None:
        self.ui.show(f"\nReview judgment: {judgment.summary}")
        if judgment.concerns:
            self.ui.show(f"\nConcerns:\n{format_concerns(judgment.concerns)}")

    def _ask_questions(self, judgment: ReviewJudgment) -> str:
        answers = []
        for question in judgment.questions:
            answer = self.ui.ask_question(question.question, question.choices)
            answers.append(f"Q: {question.question}\nA: {answer}")
        return "\n\n".join(answers)

    async def _generate_plan(self, prompt: str, label: str) -> str:
        assert self.roles is not None
        plan = await self._step(label, self.roles.generator.generate_plan(prompt))
        if not plan.strip():
            raise PairflowError(
                f"Plan generation returned an empty response from {self.settings.generator}."
            )
        log_payload("Plan", plan)
        return plan

    # -- Phases -----------------------------------------------------------------

    async def run(self, request: str) -> WorkflowOutcome:
        """Run the whole workflow for one user request.

        Raises:
            WorkflowAborted: the user declined a gate or interrupted a prompt.
            PairflowError: a backend failed or the workspace is unusable.
        """
        if self.roles is None:
            self.ui.notice("Checking CLI compatibility...")
            claude_streaming = await asyncio.to_thread(self.probe, self.settings)
            self.roles = build_roles(self.settings, claude_streaming=claude_streaming)
        log_payload("Request", request)

        plan = await self._plan_phase(request)
        plan = await self._approval_phase(plan)
        if self.settings.plan_only:
            return WorkflowOutcome("plan_only", plan)
        await self._code_phase(plan)
        self._banner(prompts.WORKFLOW_COMPLETE)
        return WorkflowOutcome("completed", plan)

    async def _plan_phase(self, request: str) -> str:
        assert self.roles is not None
        limit = self.settings.max_plan_iterations

        self._banner("Step 1: generating plan...")
        plan = await self._generate_plan(prompts.plan_generation(request), "Generating plan")

        judgment: ReviewJudgment | None = None
        review_text = ""
        for iteration in range(1, limit + 1):
            self._banner(f"Step 2: plan review ({iteration}/{limit})...")
            if judgment is None:
                prompt, fallback = prompts.plan_review(plan), None
            else:
                prompt = prompts.plan_review_continuation(format_concerns(judgment.concerns), plan)
                fallback = PlanContext.from_texts(plan, review_text)
            review_text = await self._step(
                "Reviewing plan", self.roles.reviewer.review_plan(prompt, fallback)
            )
            log_payload("Plan review", review_text)

            judgment = await self._step(
                "Judging review", self.roles.judge.judge_review(review_text)
            )
            self._show_judgment(judgment)
            if not judgment.has_blockers:
                self.ui.show("No blocking concerns. Plan review complete.")
                return plan
            if iteration == limit:
                break

            answers = self._ask_questions(judgment)
            self._banner("Step 3: revising plan...")
            plan = await self._generate_plan(
                prompts.plan_revision(plan, format_concerns(judgment.concerns), answers or None),
                "Revising plan",
            )

        assert judgment is not None
        self._banner(prompts.loop_limit_warning("plan", limit))
        self.ui.show(f"\nRemaining concerns:\n{format_concerns(judgment.concerns)}")
        if not self.ui.confirm(prompts.UNRESOLVED_CONCERNS_CONTINUE):
            raise WorkflowAborted(prompts.WORKFLOW_ABORTED)
        return plan

    async def _approval_phase(self, plan: str) -> str:
        while True:
            self._banner("Final plan:")
            self.ui.show(SEPARATOR)
            self.ui.show(plan)
            self.ui.show(SEPARATOR)

            approval = self.ui.ask_plan_approval()
            if approval.action == "approve":
                return plan
            if approval.action == "abort":
                raise WorkflowAborted(prompts.WORKFLOW_ABORTED)
            log.info("Revising plan per user instruction: %s", approval.instruction)
            plan = await self._generate_plan(
                prompts.plan_user_revision(plan, approval.instruction), "Revising plan"
            )

    async def _code_phase(self, plan: str) -> None:
        assert self.roles is not None
        limit = self.settings.max_code_iterations
        cwd = self.settings.cwd

        self._banner("Step 4: generating code...")
        output = await self._step(
            "Generating code", self.roles.generator.generate_code(prompts.code_generation())
        )
        log_payload("Code generation output", output)

        judgment: ReviewJudgment | None = None
        diff = review_text = ""
        for iteration in range(1, limit + 1):
            self._banner(f"Step 5: code review ({iteration}/{limit})...")
            if not git_ops.is_git_repo(cwd):
                raise PairflowError(prompts.NO_GIT_REPO)
            if not git_ops.has_changes(cwd):
                raise PairflowError(prompts.NO_GIT_CHANGES)

            fallback = CodeContext.from_texts(diff, review_text) if judgment else None
            diff = git_ops.collect_diff(cwd)
            review_text = await self._step(
                "Reviewing code",
                self.roles.reviewer.review_code(prompts.code_review(plan, diff), fallback),
            )
            log_payload("Code review", review_text)

            judgment = await self._step(
                "Judging review", self.roles.judge.judge_review(review_text)
            )
            self._show_judgment(judgment)
            if not judgment.has_blockers:
                self.ui.show("No blocking concerns. Code review complete.")
                return
            if iteration == limit:
                break

            self._banner("Step 6: revising code...")
            output = await self._step(
                "Revising code",
                self.roles.generator.generate_code(
                    prompts.code_revision(format_concerns(judgment.concerns))
                ),
            )
            log_payload("Code revision output", output)

        assert judgment is not None
        self._banner(prompts.loop_limit_warning("code", limit))
        self.ui.show(f"\nRemaining concerns:\n{format_concerns(judgment.concerns)}")
        if not self.ui.confirm(prompts.UNRESOLVED_CONCERNS_FINISH):
            raise WorkflowAborted(prompts.WORKFLOW_ABORTED)
