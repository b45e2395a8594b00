"""
Structured event sink for derivation and governance events.

Services call ``get_event_sink().emit(event_type, use_case_id=..., **payload)``
instead of logging free text. The default sink writes one log record per
event with ``event_type`` / ``use_case_id`` / ``payload`` extras, which the
JSON formatter promotes to top-level keys. Tests install a
``RecordingEventSink`` to assert on emitted events.

Event types:
    phase_changed, phase_transition_override, governance_auto_deactivation,
    governance_legacy_warning, activation_blocked, gate_decision,
    derivation_failed, portfolio_rescored, bulk_derivation_completed
"""

from __future__ import annotations

import logging
from typing import Protocol

from flask import current_app, has_app_context

logger = logging.getLogger("portfolio.events")

_WARNING_EVENTS = {
    "governance_auto_deactivation",
    "governance_legacy_warning",
    "activation_blocked",
    "derivation_failed",
}


class EventSink(Protocol):
    def emit(self, event_type: str, use_case_id: str | None = None, **payload) -> None: ...


class LoggingEventSink:
    """Default sink: one structured log record per event."""

    def __init__(self, log: logging.Logger | None = None):
        self.log = log or logger

    def emit(self, event_type: str, use_case_id: str | None = None, **payload) -> None:
        level = logging.WARNING if event_type in _WARNING_EVENTS else logging.INFO
        self.log.log(
            level,
            "%s use_case=%s",
            event_type,
            use_case_id,
            extra={"event_type": event_type, "use_case_id": use_case_id, "payload": payload},
        )


class RecordingEventSink:
    """Keeps events in memory."""

    def __init__(self):
        self.events: list[dict] = []

    def emit(self, event_type: str, use_case_id: str | None = None, **payload) -> None:
        self.events.append({"event_type": event_type, "use_case_id": use_case_id, **payload})

    def of_type(self, event_type: str) -> list[dict]:
        return [e for e in self.events if e["event_type"] == event_type]

    def clear(self) -> None:
        self.events.clear()


_fallback_sink = LoggingEventSink()


def init_event_sink(app, sink: EventSink | None = None) -> EventSink:
    sink = sink or LoggingEventSink()
    app.extensions["event_sink"] = sink
    return sink


def get_event_sink() -> EventSink:
    if has_app_context():
        return current_app.extensions.get("event_sink", _fallback_sink)
    return _fallback_sink


class BufferedEventSink:
    """
    Holds events until ``flush()``.

    Used by writes that can still be vetoed after an event is raised; when
    the write is abandoned the buffer is simply dropped.
    """

    def __init__(self, target: EventSink | None = None):
        self.target = target
        self.pending: list[tuple[str, str | None, dict]] = []

    def emit(self, event_type: str, use_case_id: str | None = None, **payload) -> None:
        self.pending.append((event_type, use_case_id, payload))

    def flush(self) -> None:
        target = self.target or get_event_sink()
        for event_type, use_case_id, payload in self.pending:
            target.emit(event_type, use_case_id=use_case_id, **payload)
        self.pending.clear()
