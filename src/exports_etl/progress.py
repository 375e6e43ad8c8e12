"""exports_etl.progress

One-way progress events for an append run.

Phases arrive in pipeline order:
    loading → reading → parsing → parsed → inserting* → patching* → done
with `error` allowed after any of them. `inserting` and `patching` repeat
(once per batch / once per merge step). A phase that arrives out of
order is logged and still delivered; the reporter never stops a run.
Subscribers are notified synchronously in subscription order; a
subscriber that raises is logged and skipped. reset() starts a fresh
history, and the pipeline calls it at the start of every run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

log = logging.getLogger(__name__)

PHASES = (
    "loading", "reading", "parsing", "parsed",
    "inserting", "patching", "done", "error",
)

# phase -> phases allowed to follow it
_NEXT_PHASES: dict[str | None, frozenset[str]] = {
    None: frozenset({"loading", "error"}),
    "loading": frozenset({"reading", "error"}),
    "reading": frozenset({"parsing", "error"}),
    "parsing": frozenset({"parsed", "error"}),
    "parsed": frozenset({"inserting", "error"}),
    "inserting": frozenset({"inserting", "patching", "error"}),
    "patching": frozenset({"patching", "done", "error"}),
    "done": frozenset(),
    "error": frozenset(),
}


@dataclass(frozen=True)
class ProgressEvent:
    phase: str
    rows_parsed: int | None = None
    rows_inserted: int | None = None
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"phase": self.phase}
        if self.rows_parsed is not None:
            d["rows_parsed"] = self.rows_parsed
        if self.rows_inserted is not None:
            d["rows_inserted"] = self.rows_inserted
        if self.message is not None:
            d["message"] = self.message
        return d


Subscriber = Callable[[ProgressEvent], None]


class ProgressReporter:
    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._last_phase: str | None = None
        self.events: list[ProgressEvent] = []

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    @property
    def last_phase(self) -> str | None:
        return self._last_phase

    def reset(self) -> None:
        """Forget earlier events; subscribers stay attached."""
        self._last_phase = None
        self.events = []

    def emit(
        self,
        phase: str,
        *,
        rows_parsed: int | None = None,
        rows_inserted: int | None = None,
        message: str | None = None,
    ) -> ProgressEvent:
        if phase not in _NEXT_PHASES.get(self._last_phase, frozenset()):
            log.error("progress phase %r out of order after %r", phase, self._last_phase)
        event = ProgressEvent(phase, rows_parsed, rows_inserted, message)
        self._last_phase = phase
        self.events.append(event)
        for callback in self._subscribers:
            try:
                callback(event)
            except Exception:
                log.warning("progress subscriber %r failed on %s", callback, phase, exc_info=True)
        return event
