"""Request-scoped fields for the canonical ``http.request`` log line.

RequestLoggingMiddleware starts an event for every request and logs it once
the response is sent. Code running inside that request adds what it learned,
for example which certificate was issued and at which grade::

    set_wide_event_fields(certificate_id=cert.certificate_id, grade=cert.grade)

Outside a request (CLI commands, scripts) nothing is started and setting
fields does nothing.
"""

from contextvars import ContextVar
from typing import Any

_wide_event: ContextVar[dict[str, Any] | None] = ContextVar(
    "wide_event", default=None
)


def init_wide_event() -> dict[str, Any]:
    """Start an empty event for the current context and return it."""
    event: dict[str, Any] = {}
    _wide_event.set(event)
    return event


def get_wide_event() -> dict[str, Any]:
    """The current event, or a new empty dict when none was started."""
    event = _wide_event.get()
    return {} if event is None else event


def set_wide_event_fields(**fields: Any) -> None:
    event = _wide_event.get()
    if event is not None:
        event.update(fields)


def clear_wide_event() -> None:
    _wide_event.set(None)
