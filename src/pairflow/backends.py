"""Backend call wrapper for the two assistant CLIs.

A backend turns ``(prompt, resume_session_id, hints)`` into one process
invocation and folds its output into a :class:`BackendCallResult`:

  claude: structured vocabulary (``--output-format json|stream-json``)
  codex:  event-stream vocabulary (``codex exec --json``)

With live streaming enabled, stdout chunks flow through
LineBuffer -> unit tracker -> DeltaEmitter and reach the caller's sink as
they arrive. The returned result always comes from the reducer run over
the complete event list, never from the live state.
"""

from __future__ import annotations

import logging
import shlex
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from pairflow.deltas import DeltaEmitter, TextSink
from pairflow.errors import ConfigError, TransportError
from pairflow.events import (
    ITEM_STREAM,
    STRUCTURED,
    Event,
    EventGrammar,
    LineBuffer,
    StreamResult,
    decode_events,
    one_shot_session_id,
    parse_one_shot_document,
)
from pairflow.runner import DEFAULT_TIMEOUT_SECONDS, ProcessResult, run_process

log = logging.getLogger(__name__)

GENERATE_PLAN = "generate_plan"
GENERATE_CODE = "generate_code"
REVIEW_PLAN = "review_plan"
REVIEW_CODE = "review_code"
JUDGE = "judge"
OPERATIONS = frozenset({GENERATE_PLAN, GENERATE_CODE, REVIEW_PLAN, REVIEW_CODE, JUDGE})
GENERATION_OPERATIONS = frozenset({GENERATE_PLAN, GENERATE_CODE})

SANDBOX_MODES = ("read-only", "workspace-write", "danger-full-access")
DEFAULT_CODE_REVIEW_SANDBOX = "workspace-write"

CLAUDE = "claude"
CODEX = "codex"
BACKEND_NAMES = (CLAUDE, CODEX)


@dataclass(frozen=True)
class OperationHints:
    operation: str
    dangerous: bool = False
    sandbox_mode: str | None = None

    def __post_init__(self) -> None:
        if self.operation not in OPERATIONS:
            raise ValueError(f"Unknown operation: {self.operation}")


@dataclass(frozen=True)
class BackendCallResult:
    """Outcome of one backend call.

    ``extraction_succeeded`` reports whether assistant text was recovered;
    it says nothing about transport success, which is ``exit_code == 0``.
    """

    exit_code: int
    stdout: str
    stderr: str
    response_text: str
    session_id: str | None
    extraction_succeeded: bool

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def raise_for_status(self, backend: str) -> None:
        """Raise :class:`TransportError` if the process exited non-zero."""
        if not self.ok:
            raise TransportError(
                f"{backend} exited with code {self.exit_code}",
                exit_code=self.exit_code,
                stderr=self.stderr,
            )


@dataclass
class BackendConfig:
    cwd: str | None = None
    model: str | None = None
    streaming: bool = False
    on_text: TextSink | None = None
    on_stderr: Callable[[str], None] | None = None
    timeout: float | None = DEFAULT_TIMEOUT_SECONDS


class Backend:
    """Shared call pipeline. Subclasses supply arguments and finalization."""

    name: str = ""
    grammar: EventGrammar
    # Whether live output gets a closing newline once the stream ends.
    close_live_output: bool = False

    def __init__(self, config: BackendConfig | None = None) -> None:
        self.config = config or BackendConfig()

    # -- Hooks ----------------------------------------------------------------

    def build_args(
        self, prompt: str, resume_session_id: str | None, hints: OperationHints
    ) -> list[str]:
        raise NotImplementedError

    def streams_live(self, hints: OperationHints) -> bool:
        return self.config.streaming and self.config.on_text is not None and hints.operation != JUDGE

    def finalize(
        self, process: ProcessResult, events: list[Event], hints: OperationHints
    ) -> StreamResult:
        return self.grammar.reduce(events)

    @classmethod
    def required_flags(cls, operations: Iterable[str], dangerous: bool) -> list[str]:
        raise NotImplementedError

    # -- Pipeline -------------------------------------------------------------

    async def run(
        self,
        prompt: str,
        resume_session_id: str | None = None,
        hints: OperationHints | None = None,
    ) -> BackendCallResult:
        hints = hints or OperationHints(GENERATE_PLAN)
        args = self.build_args(prompt, resume_session_id, hints)
        log.debug("%s: %s", hints.operation, describe_call(self, args))

        if self.streams_live(hints):
            assert self.config.on_text is not None
            process, events = await self._run_streaming(args, self.config.on_text)
        else:
            process = await run_process(
                self.name,
                args,
                cwd=self.config.cwd,
                timeout=self.config.timeout,
                on_stderr=self.config.on_stderr,
            )
            events = decode_events(process.stdout)

        reduced = self.finalize(process, events, hints)
        if process.exit_code != 0:
            log.debug("%s exited with %d: %s", self.name, process.exit_code, process.stderr[:500])
        return BackendCallResult(
            exit_code=process.exit_code,
            stdout=process.stdout,
            stderr=process.stderr,
            response_text=reduced.response,
            session_id=reduced.session_id,
            extraction_succeeded=reduced.extracted,
        )

    async def _run_streaming(
        self, args: list[str], sink: TextSink
    ) -> tuple[ProcessResult, list[Event]]:
        buffer = LineBuffer()
        tracker = self.grammar.new_unit_tracker()
        emitter = DeltaEmitter(sink)
        events: list[Event] = []

        def consume(batch: list[Event]) -> None:
            for event in batch:
                events.append(event)
                observed = tracker.observe(event)
                if observed is not None:
                    emitter.update(*observed)

        process = await run_process(
            self.name,
            args,
            cwd=self.config.cwd,
            timeout=self.config.timeout,
            on_stdout=lambda chunk: consume(buffer.feed(chunk)),
            on_stderr=self.config.on_stderr,
        )
        consume(buffer.flush())
        if self.close_live_output:
            emitter.finish()
        return process, events


class ClaudeBackend(Backend):
    name = CLAUDE
    grammar = STRUCTURED
    close_live_output = True

    def build_args(
        self, prompt: str, resume_session_id: str | None, hints: OperationHints
    ) -> list[str]:
        args = ["--print"]
        if hints.operation != JUDGE:
            fmt = "stream-json" if self.streams_live(hints) else "json"
            args += ["--output-format", fmt]
        if resume_session_id:
            args += ["--resume", resume_session_id]

        if hints.operation == GENERATE_CODE:
            if hints.dangerous:
                args.append("--dangerously-skip-permissions")
            else:
                args += ["--permission-mode", "acceptEdits"]
        elif hints.operation == JUDGE:
            args.append("--no-session-persistence")

        if self.streams_live(hints):
            args += ["--verbose", "--include-partial-messages"]
        if self.config.model:
            args += ["--model", self.config.model]
        args.append(prompt)
        return args

    def finalize(
        self, process: ProcessResult, events: list[Event], hints: OperationHints
    ) -> StreamResult:
        if hints.operation == JUDGE:
            return StreamResult(process.stdout, None, bool(process.stdout.strip()))

        reduced = self.grammar.reduce(events)
        if reduced.extracted or self.streams_live(hints):
            return reduced

        # A single json document that the event reducer did not recognise.
        response, parsed = parse_one_shot_document(process.stdout)
        session_id = reduced.session_id or one_shot_session_id(process.stdout)
        return StreamResult(response, session_id, parsed)

    @classmethod
    def required_flags(cls, operations: Iterable[str], dangerous: bool) -> list[str]:
        flags = ["--print"]

        def add(*names: str) -> None:
            for name in names:
                if name not in flags:
                    flags.append(name)

        for operation in operations:
            if operation == JUDGE:
                add("--no-session-persistence")
                continue
            add("--output-format", "--resume")
            if operation == GENERATE_CODE:
                add("--dangerously-skip-permissions" if dangerous else "--permission-mode")
        return flags

    @staticmethod
    def streaming_flags() -> list[str]:
        return ["stream-json", "--include-partial-messages"]


class CodexBackend(Backend):
    name = CODEX
    grammar = ITEM_STREAM

    def sandbox_for(self, hints: OperationHints) -> str:
        if hints.operation in GENERATION_OPERATIONS:
            return "danger-full-access" if hints.dangerous else "workspace-write"
        if hints.operation == REVIEW_CODE:
            return hints.sandbox_mode or DEFAULT_CODE_REVIEW_SANDBOX
        return "read-only"

    def build_args(
        self, prompt: str, resume_session_id: str | None, hints: OperationHints
    ) -> list[str]:
        if resume_session_id:
            args = ["exec", "resume", resume_session_id, "--json"]
        else:
            args = ["exec", "--sandbox", self.sandbox_for(hints), "--json"]
        if self.config.model:
            args += ["--model", self.config.model]
        args.append(prompt)
        return args

    @classmethod
    def required_flags(cls, operations: Iterable[str], dangerous: bool) -> list[str]:
        flags = ["--sandbox", "--json"]
        if any(op != JUDGE for op in operations):
            flags.append("resume")
        return flags


BACKENDS: dict[str, type[Backend]] = {CLAUDE: ClaudeBackend, CODEX: CodexBackend}

HELP_ARGS: dict[str, list[str]] = {CLAUDE: ["--help"], CODEX: ["exec", "--help"]}


def create_backend(name: str, config: BackendConfig | None = None) -> Backend:
    try:
        cls = BACKENDS[name]
    except KeyError:
        raise ConfigError(
            f"Unknown backend '{name}'. Valid: {', '.join(BACKEND_NAMES)}"
        ) from None
    return cls(config)


def describe_call(backend: Backend, args: list[str]) -> str:
    """Render a command line for debug output, eliding the prompt."""
    return shlex.join([backend.name, *args[:-1], "<prompt>"])
