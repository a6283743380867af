"""
Pure reducer for emotional state transitions.

Uses a dispatch dictionary for O(1) event type lookup. Every handler
returns a new, clamped ``EmotionalState``; the input is never mutated.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, Optional

from .event_types import StateEvent, EventType
from ...types import EMOTION_DIMENSIONS, EmotionalState

logger = logging.getLogger(__name__)

NEUTRAL = 50


def _handle_state_init(state: Optional[EmotionalState], payload: Dict[str, Any]) -> EmotionalState:
    return EmotionalState.from_dict(payload.get("state", {}))


def _handle_trigger_deltas(state: Optional[EmotionalState], payload: Dict[str, Any]) -> EmotionalState:
    """Add partial deltas; dimensions absent from the map are unchanged."""
    base = state or EmotionalState()
    deltas = payload.get("deltas", {})
    changed = {
        d: getattr(base, d) + deltas[d]
        for d in EMOTION_DIMENSIONS
        if d in deltas
    }
    return replace(base, **changed).clamped()


def _handle_decay(state: Optional[EmotionalState], payload: Dict[str, Any]) -> EmotionalState:
    """Move every dimension toward neutral by ``factor`` of its distance."""
    base = state or EmotionalState()
    factor = payload.get("factor", 0.0)
    decayed = {
        d: getattr(base, d) - (getattr(base, d) - NEUTRAL) * factor
        for d in EMOTION_DIMENSIONS
    }
    return EmotionalState(**decayed).clamped()


def _handle_state_load(state: Optional[EmotionalState], payload: Dict[str, Any]) -> EmotionalState:
    if "state_dict" not in payload:
        return state or EmotionalState()
    loaded = payload["state_dict"]
    base = (state or EmotionalState()).to_dict()
    base.update({k: v for k, v in loaded.items() if k in EMOTION_DIMENSIONS})
    return EmotionalState.from_dict(base)


# O(1) dispatch table
_EVENT_HANDLERS: Dict[EventType, Callable[[Optional[EmotionalState], Dict[str, Any]], EmotionalState]] = {
    EventType.STATE_INIT: _handle_state_init,
    EventType.TRIGGER_DELTAS: _handle_trigger_deltas,
    EventType.DECAY_APPLIED: _handle_decay,
    EventType.STATE_LOAD: _handle_state_load,
}


def reduce_state(state: Optional[EmotionalState], event: StateEvent) -> Optional[EmotionalState]:
    """Apply an event to produce a new state."""
    handler = _EVENT_HANDLERS.get(event.event_type)

    if handler is None:
        logger.warning(f"Unknown event type: {event.event_type}")
        return state

    return handler(state, event.payload)


def reduce_events(
    initial_state: Optional[EmotionalState],
    events: Iterable[StateEvent],
) -> Optional[EmotionalState]:
    """Apply a sequence of events to get the final state."""
    state = initial_state
    for event in events:
        state = reduce_state(state, event)
    return state
