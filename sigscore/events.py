"""In-process downstream event hooks.

Emitted event types: ``signal.created``, ``score.computed``, ``score.changed``.
Listeners are collaborators (webhook fan-out, websocket push); a failing
listener is logged and never affects the emitting operation.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

SIGNAL_CREATED = "signal.created"
SCORE_COMPUTED = "score.computed"
SCORE_CHANGED = "score.changed"

EVENT_TYPES = frozenset({SIGNAL_CREATED, SCORE_COMPUTED, SCORE_CHANGED})

Listener = Callable[[str, str, dict[str, Any]], None]

_listeners: dict[str, list[Listener]] = defaultdict(list)


def subscribe(event_type: str, listener: Listener) -> None:
    """Register ``listener(event_type, organization_id, payload)``."""
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown event type: {event_type}")
    _listeners[event_type].append(listener)


def unsubscribe(event_type: str, listener: Listener) -> None:
    if listener in _listeners.get(event_type, []):
        _listeners[event_type].remove(listener)


def emit(event_type: str, organization_id: str, payload: dict[str, Any]) -> None:
    logger.debug("Event %s org=%s payload=%s", event_type, organization_id, payload)
    for listener in list(_listeners.get(event_type, [])):
        try:
            listener(event_type, organization_id, payload)
        except Exception:
            logger.exception("Event listener failed: event=%s org=%s", event_type, organization_id)
