from __future__ import annotations

import asyncio
import difflib
import json
import logging
import os

import click

from pairflow import __version__
from pairflow.backends import BACKEND_NAMES, SANDBOX_MODES
from pairflow.config import Settings, load_settings
from pairflow.errors import PairflowError, WorkflowAborted
from pairflow.interaction import ConsoleInteraction

log = logging.getLogger(__name__)

EXIT_INTERRUPTED = 130


def configure_logging(*, verbose: bool = False, debug: bool = False) -> None:
    """Attach one stderr handler to the ``pairflow`` logger."""
    logger = logging.getLogger("pairflow")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(levelname)s %(message)s" if debug else "%(message)s")
    )
    logger.addHandler(handler)
    logger.propagate = False
    if debug:
        logger.setLevel(logging.DEBUG)
    elif verbose:
        logger.setLevel(logging.INFO)
    else:
        logger.setLevel(logging.WARNING)


class _PairflowGroup(click.Group):
    """Group that suggests close command names and renders pairflow errors.

    Library code raises :class:`PairflowError`; this is the one place that
    turns it into an ``Error: ...`` line and an exit status.
    """

    def resolve_command(self, ctx, args):  # type: ignore[override]
        try:
            return super().resolve_command(ctx, args)
        except click.UsageError:
            if args:
                cmd_name = args[0]
                matches = difflib.get_close_matches(
                    cmd_name, self.list_commands(ctx), n=2, cutoff=0.5
                )
                hint = f" Did you mean: {', '.join(matches)}?" if matches else ""
                raise click.UsageError(f"No such command '{cmd_name}'.{hint}") from None
            raise

    def main(self, args=None, standalone_mode=True, **kwargs):  # type: ignore[override]
        try:
            rv = super().main(args=args, standalone_mode=False, **kwargs)
            code = rv if isinstance(rv, int) else 0
        except click.ClickException as e:
            e.show()
            code = e.exit_code
        except WorkflowAborted as e:
            click.secho("Interrupted." if e.interrupted else str(e), fg="yellow", err=True)
            code = EXIT_INTERRUPTED if e.interrupted else 1
        except PairflowError as e:
            click.secho(f"Error: {e}", fg="red", err=True)
            code = 1
        except (click.Abort, KeyboardInterrupt):
            click.echo("\nInterrupted.", err=True)
            code = EXIT_INTERRUPTED
        if standalone_mode:
            raise SystemExit(code)
        return code


@click.group(cls=_PairflowGroup)
@click.version_option(version=__version__)
def main():
    """Pair a code-generating assistant with a reviewing assistant.

    \b
    Quick start:
      pairflow run "Add a --json flag to the export command"
      pairflow run                 Interactive: one workflow per request
      pairflow doctor              Check the claude and codex CLIs

    \b
    Workflow:
      plan -> plan review -> your approval -> code -> code review
    """


def _backend_options(f):
    for name in ("judge", "reviewer", "generator"):
        f = click.option(
            f"--{name}",
            type=click.Choice(BACKEND_NAMES),
            default=None,
            help=f"Backend for the {name} role.",
        )(f)
    return f


@main.command()
@click.argument("prompt", required=False)
@click.option("--max-plan-iterations", type=int, default=None, help="Plan review rounds (default 10).")
@click.option("--max-code-iterations", type=int, default=None, help="Code review rounds (default 10).")
@click.option("--claude-model", default=None, help="Model passed to claude.")
@click.option("--codex-model", default=None, help="Model passed to codex.")
@_backend_options
@click.option(
    "--codex-sandbox",
    type=click.Choice(SANDBOX_MODES),
    default=None,
    help="Sandbox for codex code review (default workspace-write).",
)
@click.option("--timeout", type=float, default=None, help="Per-call timeout in seconds.")
@click.option("--dangerous", is_flag=True, help="Let the generator skip permission checks.")
@click.option("--plan-only", is_flag=True, help="Stop after the plan is approved.")
@click.option("-v", "--verbose", is_flag=True, help="Stream backend output and show progress logs.")
@click.option("--debug", is_flag=True, help="Full debug logging (implies --verbose).")
@click.option(
    "--cwd",
    type=click.Path(exists=True, file_okay=False),
    default=None,
    help="Working directory for the backends (default: current directory).",
)
def run(prompt: str | None, **options):
    """Run the workflow for PROMPT, or start an interactive loop without one."""
    for flag in ("dangerous", "plan_only", "verbose", "debug"):
        options[flag] = options[flag] or None
    options["cwd"] = os.path.abspath(options["cwd"] or os.getcwd())
    settings = load_settings(options)
    configure_logging(verbose=settings.verbose, debug=settings.debug)
    log.debug("Settings: %s", settings)

    if prompt is None:
        from pairflow.repl import run_repl

        summary = settings.non_default_summary()
        run_repl(settings, options_line=f"Options: {summary}" if summary else "")
        return

    _run_once(settings, prompt)


def _run_once(settings: Settings, prompt: str) -> None:
    from pairflow.workflow import Workflow

    summary = settings.non_default_summary()
    if summary:
        click.echo(f"Options: {summary}", err=True)
    workflow = Workflow(settings, ConsoleInteraction(show_progress=not settings.streaming))
    outcome = asyncio.run(workflow.run(prompt))
    if outcome.status == "plan_only":
        click.echo("Plan approved (--plan-only): skipping code generation.", err=True)


@main.command()
@_backend_options
@click.option("--dangerous", is_flag=True, help="Also check the flags --dangerous needs.")
def doctor(**options):
    """Check that the selected assistant CLIs support every flag pairflow uses."""
    from pairflow.doctor import run_doctor

    options["dangerous"] = options["dangerous"] or None
    settings = load_settings(options)
    configure_logging()
    report = run_doctor(settings)
    click.echo(json.dumps(report, indent=2))
    if report["status"] == "fail":
        raise click.ClickException("Doctor checks failed.")
