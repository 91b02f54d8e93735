"""Interactive loop: one workflow per entered request."""

from __future__ import annotations

import asyncio
import logging
import os
import readline
from collections.abc import Callable
from pathlib import Path

import click

from pairflow import __version__, prompts
from pairflow.config import Settings
from pairflow.errors import PairflowError, WorkflowAborted
from pairflow.interaction import ConsoleInteraction
from pairflow.paths import HISTORY_FILE
from pairflow.workflow import Workflow

log = logging.getLogger(__name__)

MAX_HISTORY_SIZE = 500
EXIT_COMMANDS = frozenset({"exit", "quit"})


def load_history(path: Path) -> list[str]:
    """Return saved entries, oldest first. Unreadable files yield []."""
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return []
    entries = [line.strip() for line in lines if line.strip()]
    return entries[-MAX_HISTORY_SIZE:]


def save_history(path: Path, entries: list[str]) -> None:
    """Write the newest entries with owner-only permissions. Failures are logged."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write("".join(f"{entry}\n" for entry in entries[-MAX_HISTORY_SIZE:]))
        os.chmod(path, 0o600)
    except OSError as exc:
        log.debug("Could not save history to %s: %s", path, exc)


def add_history(entries: list[str], line: str) -> bool:
    """Append *line* unless it repeats the previous entry. Returns True if added."""
    if entries and entries[-1] == line:
        return False
    entries.append(line)
    del entries[:-MAX_HISTORY_SIZE]
    return True


def read_line() -> str | None:
    """Read one request. EOF returns None; Ctrl+C returns "" to re-prompt."""
    click.echo(prompts.REPL_PROMPT, nl=False, err=True)
    try:
        return input()
    except EOFError:
        return None
    except KeyboardInterrupt:
        click.echo(err=True)
        return ""


def _default_runner(settings: Settings, request: str) -> None:
    workflow = Workflow(settings, ConsoleInteraction(show_progress=not settings.streaming))
    asyncio.run(workflow.run(request))


def run_repl(
    settings: Settings,
    *,
    history_path: Path = HISTORY_FILE,
    reader: Callable[[], str | None] = read_line,
    runner: Callable[[Settings, str], None] = _default_runner,
    options_line: str = "",
) -> None:
    """Prompt for requests until exit/quit/EOF. A failed workflow does not end the loop."""
    click.echo(prompts.repl_welcome(__version__), err=True)
    if options_line:
        click.echo(options_line, err=True)

    history = load_history(history_path)
    readline.clear_history()
    for entry in history:
        readline.add_history(entry)

    while True:
        line = reader()
        if line is None:
            click.echo(f"\n{prompts.REPL_GOODBYE}", err=True)
            return
        request = line.strip()
        if not request:
            continue
        if request in EXIT_COMMANDS:
            click.echo(prompts.REPL_GOODBYE, err=True)
            return

        if add_history(history, request):
            save_history(history_path, history)

        try:
            runner(settings, request)
        except WorkflowAborted as exc:
            click.secho(f"\n{'Interrupted.' if exc.interrupted else exc}", fg="yellow", err=True)
        except KeyboardInterrupt:
            click.secho("\nInterrupted.", fg="yellow", err=True)
        except PairflowError as exc:
            click.secho(f"\nError: {exc}", fg="red", err=True)
        click.echo("Enter the next request.\n", err=True)
