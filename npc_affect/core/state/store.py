"""
Emotion state store with an event log.

The store is the single writer for every NPC's emotional state.
All writes go through apply(), all reads through get() and snapshot().

Reads return copies, so callers never hold a reference into the store.
"""
from __future__ import annotations

import copy
import logging
import threading
from collections import deque
from typing import Callable, Deque, Dict, List, Optional

from .event_types import StateEvent, EventType, state_init_event
from .reducer import reduce_state
from ...errors import UnknownEntity
from ...types import EmotionalState

logger = logging.getLogger(__name__)

_CREATING_EVENTS = (EventType.STATE_INIT, EventType.STATE_LOAD)


class EmotionStateStore:
    """
    Per-NPC emotional state with event sourcing.

    Features:
    - Thread-safe
    - Event log for replay
    - Subscriber notifications

    Example:
        >>> store = EmotionStateStore()
        >>> store.initialize("lydia", EmotionalState(anger=70))
        >>> store.apply(trigger_deltas_event("lydia", {"anger": 10}, "player_attacked"))
        >>> store.get("lydia").anger
        80
    """

    def __init__(self, max_event_log: int = 1000):
        self._states: Dict[str, EmotionalState] = {}
        self._lock = threading.RLock()
        self._seq = 0
        self._event_log: Deque[StateEvent] = deque(maxlen=max_event_log)
        self._subscribers: List[Callable[[EmotionalState, StateEvent], None]] = []

    def initialize(self, npc_id: str, state: EmotionalState) -> EmotionalState:
        """Create (or replace) an NPC's state."""
        return self.apply(state_init_event(npc_id, state))

    def apply(self, event: StateEvent) -> EmotionalState:
        """
        Apply an event and return a copy of the resulting state.

        Raises:
            UnknownEntity: The event targets an NPC with no state and is
                not an init or load event.
        """
        with self._lock:
            current = self._states.get(event.npc_id)
            if current is None and event.event_type not in _CREATING_EVENTS:
                raise UnknownEntity("NPC", event.npc_id)

            self._seq += 1
            event = StateEvent(
                event_type=event.event_type,
                npc_id=event.npc_id,
                payload=event.payload,
                timestamp=event.timestamp,
                seq=self._seq,
                player_id=event.player_id,
                source=event.source,
            )
            self._event_log.append(event)

            new_state = reduce_state(current, event)
            self._states[event.npc_id] = new_state

            for sub in self._subscribers:
                try:
                    sub(copy.deepcopy(new_state), event)
                except Exception as e:
                    logger.warning(f"Subscriber error: {e}")

            logger.debug(f"Applied event: {event.event_type.value} npc={event.npc_id} seq={event.seq}")
            return copy.deepcopy(new_state)

    def get(self, npc_id: str) -> Optional[EmotionalState]:
        """Copy of an NPC's current state, or None when uninitialized."""
        with self._lock:
            state = self._states.get(npc_id)
            return copy.deepcopy(state) if state is not None else None

    def has(self, npc_id: str) -> bool:
        with self._lock:
            return npc_id in self._states

    def npc_ids(self) -> List[str]:
        with self._lock:
            return list(self._states.keys())

    def snapshot(self) -> Dict[str, EmotionalState]:
        """Copy of every NPC's state."""
        with self._lock:
            return copy.deepcopy(self._states)

    def get_event_log(self, n: Optional[int] = None, npc_id: Optional[str] = None) -> List[StateEvent]:
        """Get recent events from the log, optionally for one NPC."""
        with self._lock:
            events = list(self._event_log)
        if npc_id is not None:
            events = [e for e in events if e.npc_id == npc_id]
        if n is not None:
            events = events[-n:]
        return events

    def subscribe(
        self,
        callback: Callable[[EmotionalState, StateEvent], None],
    ) -> Callable[[], None]:
        """
        Subscribe to state changes.

        Args:
            callback: Called with (new_state, event) after each mutation

        Returns:
            Unsubscribe function
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe
