"""Line-delimited JSON event decoding for the two backend vocabularies.

Both assistant CLIs print one JSON object per line. They disagree on
everything else:

- the *structured* vocabulary (``claude --output-format stream-json``) emits
  ``assistant`` events carrying the full current message content, with
  ``tool_result``/``user`` events separating message groups and a terminal
  ``result`` event;
- the *event-stream* vocabulary (``codex exec --json``) emits
  ``item.started``/``item.updated``/``item.completed`` events keyed by a
  stable item id, and announces its thread with ``thread.started``.

Each vocabulary is a :class:`EventGrammar` strategy: a single-event text
extractor, a unit tracker for live deltas, and a reducer that folds the
complete event list into the authoritative :class:`StreamResult`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

log = logging.getLogger(__name__)

Event = dict[str, Any]

ASSISTANT = "assistant"
SYSTEM = "system"
RESULT = "result"
GROUP_BOUNDARY_TYPES = frozenset({"tool_result", "user"})

THREAD_STARTED = "thread.started"
ITEM_LIFECYCLE_TYPES = frozenset({"item.started", "item.updated", "item.completed"})
ITEM_COMPLETED = "item.completed"
AGENT_MESSAGE = "agent_message"


@dataclass(frozen=True)
class StreamResult:
    """Final answer and session id recovered from one call's events."""

    response: str
    session_id: str | None
    extracted: bool


def _decode_json_object(text: str) -> Event | None:
    """Decode one line, returning None for malformed JSON or non-objects."""
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


class LineBuffer:
    """Accumulates raw text chunks and yields complete decoded events.

    A trailing partial line is held back until the newline arrives (or
    until :meth:`flush` at end of stream).
    """

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, chunk: str) -> list[Event]:
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split("\n")
        events: list[Event] = []
        for line in lines:
            stripped = line.strip()
            if not stripped:
                continue
            event = _decode_json_object(stripped)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> list[Event]:
        remaining = self._buffer.strip()
        self._buffer = ""
        if not remaining:
            return []
        event = _decode_json_object(remaining)
        return [event] if event is not None else []


def decode_events(text: str) -> list[Event]:
    """Decode a complete captured stdout into its ordered event list."""
    buffer = LineBuffer()
    return buffer.feed(text) + buffer.flush()


def event_type(event: Event) -> str | None:
    value = event.get("type")
    return value if isinstance(value, str) else None


# ---------------------------------------------------------------------------
# Structured vocabulary
# ---------------------------------------------------------------------------


def extract_assistant_text(event: Event) -> str | None:
    """Return the joined text blocks of an ``assistant`` event, else None."""
    if event_type(event) != ASSISTANT:
        return None
    message = event.get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if not isinstance(content, list):
        return None
    texts = [
        block["text"]
        for block in content
        if isinstance(block, dict)
        and block.get("type") == "text"
        and isinstance(block.get("text"), str)
    ]
    return "\n".join(texts) if texts else None


def _structured_session_id(events: list[Event]) -> str | None:
    session_id: str | None = None
    for event in events:
        if event_type(event) == SYSTEM and isinstance(event.get("session_id"), str):
            session_id = event["session_id"]
            break
    if session_id is None:
        for event in events:
            if isinstance(event.get("session_id"), str):
                session_id = event["session_id"]
                break
    for event in events:
        if event_type(event) == RESULT and isinstance(event.get("session_id"), str):
            session_id = event["session_id"]
    return session_id


def _last_result_event(events: list[Event]) -> Event | None:
    for event in reversed(events):
        if event_type(event) == RESULT:
            return event
    return None


def reduce_structured_events(events: list[Event]) -> StreamResult:
    """Fold structured-vocabulary events into the final answer.

    Message groups are separated by boundary events. With several groups the
    terminal ``result`` field only repeats the last one, so the groups are
    joined instead; with one group (or none) the ``result`` field wins.
    """
    groups: list[str] = []
    current = ""
    for event in events:
        if event_type(event) in GROUP_BOUNDARY_TYPES:
            if current:
                groups.append(current)
                current = ""
            continue
        text = extract_assistant_text(event)
        if text is not None:
            current = text
    if current:
        groups.append(current)

    session_id = _structured_session_id(events)
    if len(groups) > 1:
        return StreamResult("\n".join(groups), session_id, True)

    result_event = _last_result_event(events)
    if result_event is not None and isinstance(result_event.get("result"), str):
        final = result_event["result"]
        if groups and not final:
            log.warning(
                "Terminal result field is empty but %d chars of assistant text were "
                "streamed; using the empty result field",
                len(groups[0]),
            )
        elif groups and final != groups[0]:
            log.warning(
                "Terminal result text differs from the streamed assistant text "
                "(%d vs %d chars); using the result field",
                len(final),
                len(groups[0]),
            )
        return StreamResult(final, session_id, bool(final))

    response = groups[0] if groups else ""
    return StreamResult(response, session_id, bool(groups))


class _StructuredUnits:
    """Maps structured events onto numbered message groups."""

    def __init__(self) -> None:
        self._index = 0
        self._has_text = False

    def observe(self, event: Event) -> tuple[str, str] | None:
        if event_type(event) in GROUP_BOUNDARY_TYPES:
            if self._has_text:
                self._index += 1
                self._has_text = False
            return None
        text = extract_assistant_text(event)
        if text is None:
            return None
        self._has_text = True
        return f"group-{self._index}", text


# ---------------------------------------------------------------------------
# Event-stream vocabulary
# ---------------------------------------------------------------------------


def _agent_message_item(event: Event) -> dict[str, Any] | None:
    if event_type(event) not in ITEM_LIFECYCLE_TYPES:
        return None
    item = event.get("item")
    if not isinstance(item, dict) or item.get("type") != AGENT_MESSAGE:
        return None
    if not isinstance(item.get("text"), str):
        return None
    return item


def extract_item_text(event: Event) -> str | None:
    """Return agent-message text from an item lifecycle event, else None.

    An empty string counts as no text so it never clears a unit.
    """
    item = _agent_message_item(event)
    if item is None:
        return None
    return item["text"] or None


def _item_id(event: Event) -> str | None:
    item = event.get("item")
    if not isinstance(item, dict):
        return None
    item_id = item.get("id")
    return item_id if isinstance(item_id, str) else None


def _event_stream_session_id(events: list[Event]) -> str | None:
    for event in events:
        if event_type(event) == THREAD_STARTED and isinstance(event.get("thread_id"), str):
            return event["thread_id"]
    for event in events:
        if isinstance(event.get("session_id"), str):
            return event["session_id"]
    return None


def reduce_item_events(events: list[Event]) -> StreamResult:
    """Fold event-stream events into the final answer.

    Per item id the completed text wins; an item that never completed
    contributes its latest started/updated text. Items keep the order of
    their first appearance.
    """
    order: list[str] = []
    completed: dict[str, str] = {}
    latest: dict[str, str] = {}
    for event in events:
        if _agent_message_item(event) is None:
            continue
        item_id = _item_id(event)
        if item_id is None:
            continue
        if item_id not in order:
            order.append(item_id)
        text = extract_item_text(event)
        if text is None:
            continue
        if event_type(event) == ITEM_COMPLETED:
            completed[item_id] = text
        else:
            latest[item_id] = text

    texts = []
    for item_id in order:
        text = completed.get(item_id) or latest.get(item_id, "")
        if text:
            texts.append(text)
    return StreamResult("\n".join(texts), _event_stream_session_id(events), bool(texts))


class _ItemUnits:
    """Maps event-stream events onto their item ids."""

    def observe(self, event: Event) -> tuple[str, str] | None:
        text = extract_item_text(event)
        if text is None:
            return None
        item_id = _item_id(event)
        if item_id is None:
            return None
        return item_id, text


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class UnitTracker(Protocol):
    def observe(self, event: Event) -> tuple[str, str] | None: ...


class EventGrammar(Protocol):
    """One backend vocabulary: extractor, unit tracker, reducer."""

    name: str

    def extract_text(self, event: Event) -> str | None: ...

    def new_unit_tracker(self) -> UnitTracker: ...

    def reduce(self, events: list[Event]) -> StreamResult: ...


class StructuredGrammar:
    name = "structured"

    def extract_text(self, event: Event) -> str | None:
        return extract_assistant_text(event)

    def new_unit_tracker(self) -> UnitTracker:
        return _StructuredUnits()

    def reduce(self, events: list[Event]) -> StreamResult:
        return reduce_structured_events(events)


class ItemStreamGrammar:
    name = "event-stream"

    def extract_text(self, event: Event) -> str | None:
        return extract_item_text(event)

    def new_unit_tracker(self) -> UnitTracker:
        return _ItemUnits()

    def reduce(self, events: list[Event]) -> StreamResult:
        return reduce_item_events(events)


STRUCTURED = StructuredGrammar()
ITEM_STREAM = ItemStreamGrammar()


# ---------------------------------------------------------------------------
# One-shot structured document
# ---------------------------------------------------------------------------


def parse_one_shot_document(stdout: str) -> tuple[str, bool]:
    """Extract the answer from a single non-streamed JSON document.

    Returns ``(text, parsed)``. Field priority is ``result``, ``content``
    (text blocks), ``text``; a parseable document without those fields is
    re-serialized, and unparseable output is returned verbatim.
    """
    try:
        document = json.loads(stdout)
    except json.JSONDecodeError:
        log.debug("One-shot output is not JSON, using raw text")
        return stdout, False
    if isinstance(document, dict):
        if isinstance(document.get("result"), str):
            return document["result"], True
        if isinstance(document.get("content"), list):
            texts = [
                block.get("text", "")
                for block in document["content"]
                if isinstance(block, dict) and block.get("type") == "text"
            ]
            return "\n".join(t for t in texts if isinstance(t, str)), True
        if isinstance(document.get("text"), str):
            return document["text"], True
    if isinstance(document, str):
        return document, True
    return json.dumps(document, ensure_ascii=False), True


def one_shot_session_id(stdout: str) -> str | None:
    try:
        document = json.loads(stdout)
    except json.JSONDecodeError:
        return None
    if isinstance(document, dict) and isinstance(document.get("session_id"), str):
        return document["session_id"]
    return None
