"""Terminal interaction: approval gates, questions, progress display.

Prompts and progress go to stderr; the plan and final messages go to stdout.
Ctrl+C or EOF at any prompt aborts the workflow.
"""

from __future__ import annotations

import asyncio
import contextlib
import sys
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Literal, Protocol

import click

from pairflow import prompts
from pairflow.errors import WorkflowAborted

ApprovalAction = Literal["approve", "modify", "abort"]


@dataclass(frozen=True)
class PlanApproval:
    action: ApprovalAction
    instruction: str = ""


def parse_approval(answer: str) -> PlanApproval:
    """``y`` approves, empty or ``n`` aborts, anything else is a revision."""
    text = answer.strip()
    if text.lower() == "y":
        return PlanApproval("approve")
    if not text or text.lower() == "n":
        return PlanApproval("abort")
    return PlanApproval("modify", text)


class Interaction(Protocol):
    def show(self, text: str) -> None: ...

    def notice(self, text: str) -> None: ...

    def ask_plan_approval(self) -> PlanApproval: ...

    def confirm(self, message: str) -> bool: ...

    def ask_question(self, question: str, choices: list[str]) -> str: ...

    def progress(self, label: str) -> contextlib.AbstractAsyncContextManager[None]: ...


class ConsoleInteraction:
    def __init__(self, *, show_progress: bool = True) -> None:
        self.show_progress = show_progress

    def show(self, text: str) -> None:
        click.echo(text)

    def notice(self, text: str) -> None:
        click.secho(text, fg="yellow", err=True)

    def _prompt(self, message: str, **kwargs) -> str:
        try:
            return click.prompt(message, err=True, **kwargs)
        except click.Abort:
            raise WorkflowAborted(interrupted=True) from None

    def ask_plan_approval(self) -> PlanApproval:
        return parse_approval(self._prompt(prompts.PLAN_APPROVE, default="", show_default=False))

    def confirm(self, message: str) -> bool:
        try:
            return click.confirm(message, default=False, err=True)
        except click.Abort:
            raise WorkflowAborted(interrupted=True) from None

    def ask_question(self, question: str, choices: list[str]) -> str:
        click.echo(f"\n{question}", err=True)
        for index, choice in enumerate(choices, 1):
            click.echo(f"  {index}. {choice}", err=True)
        answer = self._prompt("Choice number or free text").strip()
        if answer.isdigit() and 1 <= int(answer) <= len(choices):
            return choices[int(answer) - 1]
        return answer

    @contextlib.asynccontextmanager
    async def progress(self, label: str) -> AsyncIterator[None]:
        """Show *label* with elapsed seconds on stderr until the block exits."""
        if not self.show_progress or not sys.stderr.isatty():
            yield
            return

        started = time.monotonic()

        async def tick() -> None:
            while True:
                elapsed = int(time.monotonic() - started)
                click.echo(f"\r{label}... {elapsed}s", nl=False, err=True)
                await asyncio.sleep(1)

        task = asyncio.create_task(tick())
        try:
            yield
        finally:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            elapsed = time.monotonic() - started
            click.echo(f"\r{label} done ({elapsed:.0f}s)", err=True)
