"""Simple in-process callback registry for approval events.

Usage:
    from sdlc_governance.services.hooks import on, fire

    on("round.completed", my_handler)
    fire("round.completed", {"round_id": 1, "subject_type": "DOCUMENT", "outcome": "APPROVED"})

Events (always fired after the database commit):
    round.created     — a new approval round (document review or status change request)
    decision.recorded — one approver decided
    round.completed   — the round resolved to APPROVED / REJECTED
    status.updated    — a project's lifecycle stage changed without a gate

Handlers are best-effort: an exception in one is logged and swallowed so a
notification problem never fails an already-recorded decision.
"""

import logging

logger = logging.getLogger(__name__)

EVENTS = frozenset({"round.created", "decision.recorded", "round.completed", "status.updated"})

_registry: dict[str, list] = {}


def on(event_type: str, callback):
    """Register a callback for an event type."""
    if event_type not in EVENTS:
        raise ValueError(f"Unknown hook event: {event_type}")
    _registry.setdefault(event_type, []).append(callback)
    logger.debug("Registered hook for %s: %s", event_type, getattr(callback, "__name__", callback))


def fire(event_type: str, payload: dict):
    """Call every registered callback for ``event_type``."""
    for cb in list(_registry.get(event_type, [])):
        try:
            cb(payload)
        except Exception as e:
            logger.error("Hook error for %s in %s: %s",
                         event_type, getattr(cb, "__name__", cb), e, exc_info=True)


def clear(event_type: str | None = None):
    """Clear hooks. If event_type given, clear only that type. Used in tests."""
    if event_type:
        _registry.pop(event_type, None)
    else:
        _registry.clear()
