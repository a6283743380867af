"""
Interfaces to the services around the NPC core, plus in-process versions.

The task orchestrator reaches the game world only through these seams:
perception, planning, action execution, result validation, persistent
memory and mood notifications. The in-process implementations back the
CLI ``simulate`` command, the API's mock mode and the tests.
"""
from __future__ import annotations

import copy
import json
import logging
import threading
from collections import deque
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Protocol

from .logging_config import get_logger
from .types import MoodTransition
from .util import clamp, new_id, now_ms

logger = logging.getLogger(__name__)
slog = get_logger("npc_affect.memory")

NULL_ADDRESS = "0x0000000000000000000000000000000000000000"

MAX_MEMORIES_PER_NPC = 100


class Perception(Protocol):
    """Gathers a game-state snapshot once per task, before planning."""

    async def observe(self) -> Dict[str, Any]:
        ...


class Planner(Protocol):
    """Chooses an action from an observation, a task type and a JSON context."""

    async def plan(self, observation: Dict[str, Any], task_type: str, context_json: str) -> Dict[str, Any]:
        ...


class ActionExecutor(Protocol):
    async def execute(self, plan: Dict[str, Any]) -> Dict[str, Any]:
        ...


class Referee(Protocol):
    """Validates an execution result; the returned dict carries ``success``."""

    async def validate(self, execution_result: Dict[str, Any]) -> Dict[str, Any]:
        ...


class MemoryStore(Protocol):
    """Persistent NPC memory."""

    async def add_memory(
        self,
        npc_id: str,
        related_address: str,
        memory_type: "MemoryType",
        content: Any,
        emotional_weight: int,
        tags: List[str],
        is_positive: bool,
    ) -> None:
        ...

    async def initialize_personality(
        self,
        npc_id: str,
        traits: Dict[str, int],
        backstory: str,
        quirks: List[str],
    ) -> None:
        ...

    async def generate_personality_context(self, npc_id: str, situation: str) -> str:
        ...


class Notifier(Protocol):
    """Fire-and-continue hook for significant mood transitions."""

    async def notify_mood_transition(self, transition: MoodTransition) -> None:
        ...


class MemoryType(str, Enum):
    INTERACTION = "interaction"
    ACHIEVEMENT = "achievement"
    RELATIONSHIP = "relationship"
    EVENT = "event"
    DIALOGUE = "dialogue"


@dataclass
class MemoryEntry:
    id: str
    npc_id: str
    related_address: str
    memory_type: MemoryType
    content: str
    timestamp: int
    emotional_weight: int
    tags: List[str] = field(default_factory=list)
    is_positive: bool = True

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["memory_type"] = self.memory_type.value
        return data


@dataclass
class PersonalityProfile:
    traits: Dict[str, int]
    backstory: str = ""
    quirks: List[str] = field(default_factory=list)
    last_updated: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Relationship:
    """
    An NPC's running affinity toward one address.

    Affinity is in [-100, 100]; ``relationship_type`` is derived from it.
    """
    target: str
    affinity: int = 0
    interaction_count: int = 0
    last_interaction: int = 0
    relationship_type: str = "neutral"

    def classify(self) -> str:
        if self.affinity >= 70:
            return "friend"
        if self.affinity >= 30:
            return "ally"
        if self.affinity <= -70:
            return "enemy"
        if self.affinity <= -30:
            return "rival"
        return "neutral"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class InMemoryMemoryStore:
    """
    Bounded in-process memory store.

    Keeps the last 100 memories per NPC, a personality profile per NPC and
    a relationship per (NPC, address). Adding a memory about an address
    moves that relationship's affinity by the memory's emotional weight,
    signed by whether it was positive.

    Example:
        >>> store = InMemoryMemoryStore()
        >>> await store.add_memory("npc_1", "0xabc", MemoryType.INTERACTION,
        ...                        "Won a duel", 80, ["duel", "success"], True)
        >>> (await store.get_relationship("npc_1", "0xabc")).relationship_type
        'friend'
    """

    def __init__(self, max_memories: int = MAX_MEMORIES_PER_NPC):
        self.max_memories = max_memories
        self._memories: Dict[str, Deque[MemoryEntry]] = {}
        self._personalities: Dict[str, PersonalityProfile] = {}
        self._relationships: Dict[str, Relationship] = {}
        self._lock = threading.RLock()

    async def initialize_personality(
        self,
        npc_id: str,
        traits: Dict[str, int],
        backstory: str,
        quirks: List[str],
    ) -> None:
        with self._lock:
            self._personalities[npc_id] = PersonalityProfile(
                traits=dict(traits),
                backstory=backstory,
                quirks=list(quirks),
            )
        logger.info(f"Initialized personality for NPC {npc_id}")

    async def get_personality_profile(self, npc_id: str) -> Optional[PersonalityProfile]:
        with self._lock:
            profile = self._personalities.get(npc_id)
            return copy.deepcopy(profile) if profile else None

    async def add_memory(
        self,
        npc_id: str,
        related_address: str,
        memory_type: MemoryType,
        content: Any,
        emotional_weight: int,
        tags: List[str],
        is_positive: bool,
    ) -> None:
        entry = MemoryEntry(
            id=new_id("memory"),
            npc_id=npc_id,
            related_address=related_address,
            memory_type=MemoryType(memory_type),
            content=content if isinstance(content, str) else json.dumps(content, default=str),
            timestamp=now_ms(),
            emotional_weight=emotional_weight,
            tags=list(tags),
            is_positive=is_positive,
        )
        with self._lock:
            memories = self._memories.setdefault(npc_id, deque(maxlen=self.max_memories))
            memories.append(entry)
            if related_address and related_address != NULL_ADDRESS:
                self._update_relationship(
                    npc_id,
                    related_address,
                    emotional_weight if is_positive else -emotional_weight,
                )
        logger.debug(f"Added {entry.memory_type.value} memory for NPC {npc_id}")

    def _update_relationship(self, npc_id: str, target: str, affinity_change: int) -> Relationship:
        key = f"{npc_id}:{target}"
        relationship = self._relationships.get(key) or Relationship(target=target)
        relationship.affinity = int(clamp(relationship.affinity + affinity_change, -100, 100))
        relationship.interaction_count += 1
        relationship.last_interaction = now_ms()
        relationship.relationship_type = relationship.classify()
        self._relationships[key] = relationship
        return relationship

    async def get_recent_memories(self, npc_id: str, count: int = 10) -> List[MemoryEntry]:
        with self._lock:
            memories = list(self._memories.get(npc_id, ()))
        return memories[-count:] if count > 0 else []

    async def get_relationship(self, npc_id: str, target: str) -> Optional[Relationship]:
        with self._lock:
            relationship = self._relationships.get(f"{npc_id}:{target}")
            return copy.deepcopy(relationship) if relationship else None

    async def generate_personality_context(self, npc_id: str, situation: str) -> str:
        """Plain-text personality, recent memories and situation for a planner."""
        profile = await self.get_personality_profile(npc_id)
        if profile is None:
            return "This NPC has no established personality. Act as a neutral, helpful character."

        lines = [
            "You are an NPC with the following personality:",
            "",
            f"Backstory: {profile.backstory}",
            f"Quirks: {', '.join(profile.quirks)}",
            "",
            "Personality Traits (0-100 scale):",
        ]
        for trait, value in profile.traits.items():
            if value > 60:
                lines.append(f"- {trait}: {value} (Strong tendency)")
            elif value > 30:
                lines.append(f"- {trait}: {value} (Moderate tendency)")

        memories = await self.get_recent_memories(npc_id, 5)
        if memories:
            lines.append("")
            lines.append("Recent Memories:")
            for memory in memories:
                mark = "+" if memory.is_positive else "-"
                lines.append(f"- ({mark}) {memory.content}")

        lines.append("")
        lines.append(f"Current Situation: {situation}")
        lines.append("")
        lines.append("Respond in character based on your personality and memories.")
        return "\n".join(lines)

    def memory_count(self, npc_id: str) -> int:
        with self._lock:
            return len(self._memories.get(npc_id, ()))


class LoggingNotifier:
    """Notifier that logs significant transitions and keeps the recent ones."""

    def __init__(self, keep: int = 1000):
        self.sent: Deque[MoodTransition] = deque(maxlen=keep)

    async def notify_mood_transition(self, transition: MoodTransition) -> None:
        self.sent.append(transition)
        slog.event(
            "mood_transition",
            f"Significant mood transition: {transition.trigger} (intensity {transition.intensity})",
            subsystem="notifier",
            npc_id=transition.npc_id,
            player_id=transition.player_id,
            intensity=transition.intensity,
        )


class EchoPerception:
    """Mock perception returning a timestamped, otherwise empty snapshot."""

    def __init__(self, world: Optional[Dict[str, Any]] = None):
        self.world = dict(world or {})

    async def observe(self) -> Dict[str, Any]:
        return {"timestamp": now_ms(), "source": "mock", **self.world}


class EchoPlanner:
    """Mock planner: the plan is the task itself, carried through the context."""

    async def plan(self, observation: Dict[str, Any], task_type: str, context_json: str) -> Dict[str, Any]:
        context = json.loads(context_json)
        return {
            "action": task_type,
            "params": context.get("task_params", {}),
            "observed_at": observation.get("timestamp"),
        }


class EchoExecutor:
    """
    Mock executor.

    Succeeds unless the plan's params carry ``fail: true``; passes
    ``winner`` through so duel outcomes can be simulated.
    """

    async def execute(self, plan: Dict[str, Any]) -> Dict[str, Any]:
        params = plan.get("params", {})
        result = {
            "action": plan.get("action"),
            "success": not params.get("fail", False),
            "executed_at": now_ms(),
        }
        if "winner" in params:
            result["winner"] = params["winner"]
        return result


class PassThroughReferee:
    """Mock referee accepting every execution result as reported."""

    async def validate(self, execution_result: Dict[str, Any]) -> Dict[str, Any]:
        final = dict(execution_result)
        final["success"] = bool(execution_result.get("success", False))
        return final
