from __future__ import annotations

import copy
from dataclasses import dataclass, field, asdict, fields
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .util import clamp, now_ms

EMOTION_DIMENSIONS: Tuple[str, ...] = (
    "happiness", "anger", "fear", "trust",
    "excitement", "sadness", "disgust", "surprise",
)

REPUTATION_TRAITS: Tuple[str, ...] = (
    "trustworthiness", "aggression", "generosity", "reliability", "respect",
)

GLOBAL_SCORE_RANGE = (-1000, 1000)
NPC_SCORE_RANGE = (-500, 500)


@dataclass
class EmotionalState:
    """
    Eight bounded mood dimensions of one NPC.

    Every field is an integer in [0, 100]. Use ``clamped()`` after any
    arithmetic; values outside the range are pulled back, never rejected.
    """
    happiness: int = 50
    anger: int = 50
    fear: int = 50
    trust: int = 50
    excitement: int = 50
    sadness: int = 50
    disgust: int = 50
    surprise: int = 50

    def clamped(self) -> "EmotionalState":
        """Return a copy with every dimension rounded and pulled into [0, 100]."""
        return EmotionalState(**{
            d: int(round(clamp(getattr(self, d), 0, 100))) for d in EMOTION_DIMENSIONS
        })

    def dominant(self, threshold: int = 70, limit: int = 2) -> List[str]:
        """Dimensions above ``threshold``, in declaration order."""
        return [d for d in EMOTION_DIMENSIONS if getattr(self, d) > threshold][:limit]

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EmotionalState":
        return cls(**{k: v for k, v in data.items() if k in EMOTION_DIMENSIONS}).clamped()


@dataclass(frozen=True)
class MoodTransition:
    """
    Immutable record of one applied trigger.

    Attributes:
        id: Unique transition id
        npc_id: NPC whose state changed
        player_id: Player whose action caused the change
        from_state: Snapshot before the trigger
        to_state: Snapshot after the trigger
        trigger: Event name of the applied trigger
        timestamp: Epoch milliseconds
        intensity: Absolute reputation impact of the trigger
        context: Trigger description
    """
    id: str
    npc_id: str
    player_id: str
    from_state: EmotionalState
    to_state: EmotionalState
    trigger: str
    timestamp: int
    intensity: int
    context: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "npc_id": self.npc_id,
            "player_id": self.player_id,
            "from_state": self.from_state.to_dict(),
            "to_state": self.to_state.to_dict(),
            "trigger": self.trigger,
            "timestamp": self.timestamp,
            "intensity": self.intensity,
            "context": self.context,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MoodTransition":
        return cls(
            id=data["id"],
            npc_id=data["npc_id"],
            player_id=data["player_id"],
            from_state=EmotionalState.from_dict(data["from_state"]),
            to_state=EmotionalState.from_dict(data["to_state"]),
            trigger=data["trigger"],
            timestamp=data["timestamp"],
            intensity=data["intensity"],
            context=data.get("context", ""),
        )


@dataclass
class ReputationTraits:
    """Derived player traits, each in [0, 100]."""
    trustworthiness: float = 50.0
    aggression: float = 50.0
    generosity: float = 50.0
    reliability: float = 50.0
    respect: float = 50.0

    def clamped(self) -> "ReputationTraits":
        return ReputationTraits(**{t: clamp(getattr(self, t), 0.0, 100.0) for t in REPUTATION_TRAITS})

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass
class PlayerReputation:
    """
    A player's standing, globally and with each NPC.

    Attributes:
        address: Player address / id
        global_score: Aggregate score in [-1000, 1000]
        npc_scores: Per-NPC score in [-500, 500]
        traits: Derived trait scores
        interactions: Number of reputation updates applied
        last_updated: Epoch milliseconds of the last update
    """
    address: str
    global_score: int = 0
    npc_scores: Dict[str, int] = field(default_factory=dict)
    traits: ReputationTraits = field(default_factory=ReputationTraits)
    interactions: int = 0
    last_updated: int = field(default_factory=now_ms)

    def npc_score(self, npc_id: str) -> int:
        return self.npc_scores.get(npc_id, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "global_score": self.global_score,
            "npc_scores": dict(self.npc_scores),
            "traits": self.traits.to_dict(),
            "interactions": self.interactions,
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlayerReputation":
        traits = data.get("traits", {})
        return cls(
            address=data["address"],
            global_score=data.get("global_score", 0),
            npc_scores=dict(data.get("npc_scores", {})),
            traits=ReputationTraits(**{k: v for k, v in traits.items() if k in REPUTATION_TRAITS}),
            interactions=data.get("interactions", 0),
            last_updated=data.get("last_updated", now_ms()),
        )


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ExploitStatus(str, Enum):
    DETECTED = "detected"
    INVESTIGATING = "investigating"
    CONFIRMED = "confirmed"
    FALSE_POSITIVE = "false_positive"


class MetricStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


class SessionOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    ABANDONED = "abandoned"
    ONGOING = "ongoing"


@dataclass(frozen=True)
class GameAction:
    """One executed game action. Immutable once appended to the log."""
    id: str
    session_id: str
    player_id: str
    npc_id: str
    action_type: str
    timestamp: int
    parameters: Dict[str, Any] = field(default_factory=dict)
    result: Dict[str, Any] = field(default_factory=dict)
    success: bool = False
    execution_time: float = 0.0
    gas_used: Optional[int] = None
    transaction_hash: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: copy.deepcopy(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GameAction":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class GameSession:
    """A player's session with one NPC."""
    id: str
    player_id: str
    npc_id: str
    start_time: int
    end_time: Optional[int] = None
    duration: Optional[int] = None
    outcome: SessionOutcome = SessionOutcome.ONGOING
    metadata: Dict[str, Any] = field(default_factory=dict)
    action_ids: List[str] = field(default_factory=list)

    @property
    def ended(self) -> bool:
        return self.end_time is not None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["outcome"] = self.outcome.value
        return data


@dataclass(frozen=True)
class DialogueBranch:
    id: str
    session_id: str
    npc_id: str
    player_id: str
    branch_path: Tuple[str, ...]
    choices: Tuple[str, ...]
    selected_choice: str
    timestamp: int
    emotional_context: Dict[str, Any] = field(default_factory=dict)

    @property
    def path_key(self) -> str:
        return " -> ".join(self.branch_path)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["branch_path"] = list(self.branch_path)
        data["choices"] = list(self.choices)
        return data


@dataclass
class ExploitDetection:
    """
    A flagged anomalous action pattern. Evidence, not proof.

    ``status`` is the only field expected to change after creation, through
    an external moderation process.
    """
    id: str
    pattern: str
    severity: Severity
    player_id: str
    description: str
    evidence: Dict[str, Any]
    timestamp: int
    npc_id: Optional[str] = None
    kind: str = "suspicious_pattern"
    status: ExploitStatus = ExploitStatus.DETECTED
    action_taken: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "pattern": self.pattern,
            "kind": self.kind,
            "severity": self.severity.value,
            "player_id": self.player_id,
            "npc_id": self.npc_id,
            "description": self.description,
            "evidence": self.evidence,
            "timestamp": self.timestamp,
            "status": self.status.value,
            "action_taken": self.action_taken,
        }


@dataclass(frozen=True)
class FairnessMetric:
    name: str
    value: float
    threshold: float
    status: MetricStatus
    description: str
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "value": self.value,
            "threshold": self.threshold,
            "status": self.status.value,
            "description": self.description,
            "timestamp": self.timestamp,
        }
