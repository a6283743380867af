# Emotional state management with event sourcing
from .event_types import StateEvent, EventType
from .reducer import reduce_state
from .store import EmotionStateStore

__all__ = ["StateEvent", "EventType", "reduce_state", "EmotionStateStore"]
