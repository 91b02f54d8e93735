"""Incremental live-text emission from wholesale-replaced text units."""

from __future__ import annotations

from collections.abc import Callable

TextSink = Callable[[str], None]


class DeltaEmitter:
    """Pushes only the unseen suffix of the cumulative text to a sink.

    Each update replaces one unit's text. The cumulative text is every
    non-empty unit in first-appearance order joined by newlines. When it
    shrinks below what was already emitted, the cursor resets and the whole
    new text is emitted again after what the consumer already shows.
    """

    def __init__(self, sink: TextSink) -> None:
        self._sink = sink
        self._texts: dict[str, str] = {}
        self._order: list[str] = []
        self.cursor = 0
        self._emitted_any = False
        self._ends_with_newline = False

    @property
    def cumulative(self) -> str:
        return "\n".join(t for t in (self._texts[u] for u in self._order) if t)

    def update(self, unit_id: str, text: str) -> str:
        """Record a unit's new text and emit the delta. Returns the delta."""
        if unit_id not in self._texts:
            self._order.append(unit_id)
        self._texts[unit_id] = text

        cumulative = self.cumulative
        if len(cumulative) < self.cursor:
            self.cursor = 0
        delta = cumulative[self.cursor :]
        if delta:
            self._sink(delta)
            self.cursor = len(cumulative)
            self._emitted_any = True
            self._ends_with_newline = delta.endswith("\n")
        return delta

    def finish(self) -> None:
        """Terminate the live output with a newline if it lacks one."""
        if self._emitted_any and not self._ends_with_newline:
            self._sink("\n")
            self._ends_with_newline = True
