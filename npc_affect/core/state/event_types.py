"""
Event types for the emotion state reducer.

Every change to an NPC's emotional state is an event. This enables:
- Deterministic replay
- A single writer per NPC
- An auditable log of what moved each dimension
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from ...types import EmotionalState
from ...util import now_ms


class EventType(str, Enum):
    """All possible emotional state mutation events."""

    STATE_INIT = "state_init"
    TRIGGER_DELTAS = "trigger_deltas"
    DECAY_APPLIED = "decay_applied"
    STATE_LOAD = "state_load"


@dataclass(frozen=True)
class StateEvent:
    """
    Immutable event representing a state mutation.

    Attributes:
        event_type: Type of mutation
        npc_id: Target NPC identifier
        payload: Event-specific data
        timestamp: Creation time in epoch milliseconds
        seq: Sequence number assigned by the store
        player_id: Player whose action produced the event, if any
        source: What created this event (for debugging)
    """
    event_type: EventType
    npc_id: str
    payload: Dict[str, Any]
    timestamp: int = field(default_factory=now_ms)
    seq: int = 0
    player_id: Optional[str] = None
    source: str = "unknown"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "npc_id": self.npc_id,
            "payload": self.payload,
            "timestamp": self.timestamp,
            "seq": self.seq,
            "player_id": self.player_id,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StateEvent":
        return cls(
            event_type=EventType(data["event_type"]),
            npc_id=data["npc_id"],
            payload=data.get("payload", {}),
            timestamp=data.get("timestamp", now_ms()),
            seq=data.get("seq", 0),
            player_id=data.get("player_id"),
            source=data.get("source", "unknown"),
        )


def state_init_event(npc_id: str, state: EmotionalState) -> StateEvent:
    """Create the initial state event for an NPC."""
    return StateEvent(
        event_type=EventType.STATE_INIT,
        npc_id=npc_id,
        payload={"state": state.to_dict()},
        source="state_init_event",
    )


def trigger_deltas_event(
    npc_id: str,
    deltas: Mapping[str, int],
    trigger: str,
    player_id: Optional[str] = None,
) -> StateEvent:
    """Create an event adding per-dimension deltas from a trigger."""
    return StateEvent(
        event_type=EventType.TRIGGER_DELTAS,
        npc_id=npc_id,
        payload={"deltas": dict(deltas), "trigger": trigger},
        player_id=player_id,
        source="trigger_deltas_event",
    )


def decay_event(npc_id: str, factor: float, hours_elapsed: float) -> StateEvent:
    """Create an event pulling every dimension toward neutral by ``factor``."""
    return StateEvent(
        event_type=EventType.DECAY_APPLIED,
        npc_id=npc_id,
        payload={"factor": factor, "hours_elapsed": hours_elapsed},
        source="decay_event",
    )


def state_load_event(npc_id: str, state_dict: Dict[str, Any]) -> StateEvent:
    """Create an event replacing the state with a persisted one."""
    return StateEvent(
        event_type=EventType.STATE_LOAD,
        npc_id=npc_id,
        payload={"state_dict": dict(state_dict)},
        source="state_load_event",
    )
