"""
Emotion engine: the rule-driven emotional state machine.

Player actions are matched against the trigger catalog; the selected
trigger moves the NPC's emotional dimensions, changes the player's
reputation and is recorded as a mood transition. Significant transitions
are pushed to the notifier and persistent memory hooks.

All read-modify-write work for one NPC runs under that NPC's lock, so
concurrent interactions with the same NPC never lose an update while
interactions with different NPCs proceed in parallel.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, List, Mapping, Optional

from .collaborators import MemoryStore, MemoryType, Notifier
from .config import RuntimeConfig, get_preset
from .core.locks import KeyedLocks
from .core.logbook import RetentionLog
from .core.state import EmotionStateStore
from .core.state.event_types import decay_event, state_load_event, trigger_deltas_event
from .errors import PersistenceFailure, UnknownEntity
from .logging_config import get_logger
from .metrics import MetricsCollector
from .reputation import ReputationStore
from .triggers import TriggerCatalog
from .types import EmotionalState, MoodTransition, PlayerReputation
from .util import new_id, now_ms

logger = logging.getLogger(__name__)
slog = get_logger("npc_affect.emotion")

# trait -> ((dimension, weight), ...); shift = (trait - 50) / 50 * weight
PERSONALITY_MODIFIERS: Dict[str, tuple] = {
    "friendly": (("happiness", 20), ("trust", 15)),
    "aggressive": (("anger", 25), ("fear", -10)),
    "cautious": (("fear", 20), ("trust", -10)),
    "cheerful": (("happiness", 25), ("sadness", -15)),
}


def apply_personality_modifiers(base: EmotionalState, traits: Mapping[str, float]) -> EmotionalState:
    """Shift a base profile by personality traits (0-100, 50 is neutral)."""
    values = base.to_dict()
    for trait, shifts in PERSONALITY_MODIFIERS.items():
        value = traits.get(trait)
        if value is None:
            continue
        factor = (value - 50) / 50
        for dimension, weight in shifts:
            values[dimension] += factor * weight
    return EmotionalState(**values).clamped()


@dataclass
class EmotionalInfluence:
    """Decision-making biases derived from an emotional state, each in [0, 100]."""
    aggressiveness: float = 50.0
    trustfulness: float = 50.0
    helpfulness: float = 50.0
    risk_taking: float = 50.0

    @classmethod
    def from_state(cls, state: EmotionalState) -> "EmotionalInfluence":
        return cls(
            aggressiveness=(state.anger + (100 - state.fear)) / 2,
            trustfulness=(state.trust + state.happiness) / 2,
            helpfulness=(state.happiness + (100 - state.sadness)) / 2,
            risk_taking=(state.excitement + (100 - state.fear)) / 2,
        )

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass
class InteractionResult:
    """
    Outcome of one ``process_interaction`` call.

    ``transition`` is None when no trigger matched; the state is then
    unchanged and ``reputation_delta`` is 0.
    """
    new_state: EmotionalState
    reputation_delta: int = 0
    transition: Optional[MoodTransition] = None

    @property
    def matched(self) -> bool:
        return self.transition is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "new_state": self.new_state.to_dict(),
            "reputation_delta": self.reputation_delta,
            "transition": self.transition.to_dict() if self.transition else None,
        }


class EmotionEngine:
    """
    Owns NPC emotional states, player reputations and the mood history.

    Example:
        >>> engine = EmotionEngine()
        >>> engine.initialize_npc_emotion("npc_1", "balanced")
        >>> result = asyncio.run(engine.process_interaction(
        ...     "npc_1", "0xabc", "gift_received", {"value": 10}))
        >>> result.new_state.happiness, result.reputation_delta
        (70, 30)
    """

    def __init__(
        self,
        catalog: Optional[TriggerCatalog] = None,
        config: Optional[RuntimeConfig] = None,
        reputations: Optional[ReputationStore] = None,
        notifier: Optional[Notifier] = None,
        memory: Optional[MemoryStore] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.config = config or RuntimeConfig()
        if catalog is None:
            catalog = (
                TriggerCatalog.load(self.config.catalog_path)
                if self.config.catalog_path
                else TriggerCatalog.default()
            )
        self.catalog = catalog
        self.states = EmotionStateStore()
        self.metrics = metrics or MetricsCollector()
        self.reputations = reputations or ReputationStore(metrics=self.metrics)
        self.notifier = notifier
        self.memory = memory
        self._clock = clock
        self._locks = KeyedLocks()
        self.mood_history: RetentionLog[MoodTransition] = RetentionLog(
            capacity=self.config.mood_history_capacity,
            timestamp_of=lambda t: t.timestamp,
            retention_ms=self.config.retention_ms,
            name="mood_history",
        )

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def initialize_npc_emotion(
        self,
        npc_id: str,
        archetype: str = "balanced",
        personality_traits: Optional[Mapping[str, float]] = None,
    ) -> EmotionalState:
        """
        Create an NPC's emotional state from an archetype base profile.

        Unknown archetypes fall back to ``balanced``. Re-initializing an
        NPC replaces its state.
        """
        preset = get_preset(archetype)
        state = preset.base_state
        if personality_traits:
            state = apply_personality_modifiers(state, personality_traits)

        state = self.states.initialize(npc_id, state)
        slog.event(
            "npc_initialized",
            f"Initialized emotional state for NPC {npc_id} ({preset.name})",
            subsystem="emotion",
            npc_id=npc_id,
            archetype=preset.name,
        )
        return state

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def process_interaction(
        self,
        npc_id: str,
        player_id: str,
        action: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> InteractionResult:
        """
        Apply the strongest matching trigger for ``action``.

        Raises:
            UnknownEntity: The NPC was never initialized.
        """
        context = context or {}

        async with self._locks.lock(npc_id):
            current = self.states.get(npc_id)
            if current is None:
                raise UnknownEntity("NPC", npc_id)

            trigger = self.catalog.select(action, context)
            if trigger is None:
                self.metrics.increment("interactions.no_match")
                logger.debug(f"No triggers found for action {action} (npc={npc_id})")
                return InteractionResult(new_state=current)

            new_state = self.states.apply(
                trigger_deltas_event(npc_id, trigger.deltas, trigger.event, player_id=player_id)
            )
            self.reputations.apply(player_id, npc_id, trigger.reputation_impact)

            transition = MoodTransition(
                id=new_id("transition"),
                npc_id=npc_id,
                player_id=player_id,
                from_state=current,
                to_state=new_state,
                trigger=trigger.event,
                timestamp=self._clock(),
                intensity=abs(trigger.reputation_impact),
                context=trigger.description,
            )
            self.mood_history.append(transition)

        self.metrics.increment("interactions.processed")
        slog.event(
            "interaction_processed",
            f"Processed {action}, reputation change: {trigger.reputation_impact}",
            subsystem="emotion",
            npc_id=npc_id,
            player_id=player_id,
            trigger=trigger.event,
            intensity=transition.intensity,
        )

        if transition.intensity > self.config.significance_threshold:
            await self._emit_significant(transition, trigger.reputation_impact)

        return InteractionResult(
            new_state=new_state,
            reputation_delta=trigger.reputation_impact,
            transition=transition,
        )

    async def _emit_significant(self, transition: MoodTransition, impact: int) -> None:
        """Push a significant transition to the hooks. Failures are logged, never raised."""
        if self.notifier is not None:
            try:
                await self.notifier.notify_mood_transition(transition)
            except Exception as e:
                self._hook_failed("notifier", transition, e)

        if self.memory is not None:
            try:
                await self.memory.add_memory(
                    transition.npc_id,
                    transition.player_id,
                    MemoryType.EVENT,
                    transition.context or transition.trigger,
                    transition.intensity,
                    [transition.trigger, "mood_transition"],
                    impact >= 0,
                )
            except Exception as e:
                self._hook_failed("memory", transition, e)

    def _hook_failed(self, hook: str, transition: MoodTransition, error: Exception) -> None:
        failure = PersistenceFailure(f"{hook} hook failed for transition {transition.id}: {error}")
        self.metrics.record_error("emotion", f"{hook}_failure")
        logger.warning(str(failure))

    async def apply_decay(self, npc_id: str, hours_elapsed: float) -> EmotionalState:
        """
        Move every dimension toward neutral (50).

        Each dimension loses ``decay_rate_per_hour * hours`` of its distance
        to 50. Past ten hours at the default rate a value overshoots neutral;
        the result is clamped to [0, 100].

        Raises:
            UnknownEntity: The NPC was never initialized.
        """
        factor = self.config.decay_rate_per_hour * max(0.0, hours_elapsed)
        async with self._locks.lock(npc_id):
            if not self.states.has(npc_id):
                raise UnknownEntity("NPC", npc_id)
            state = self.states.apply(decay_event(npc_id, factor, hours_elapsed))

        logger.debug(f"Applied {hours_elapsed}h decay to NPC {npc_id} (factor {factor:.2f})")
        return state

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_emotional_state(self, npc_id: str) -> Optional[EmotionalState]:
        return self.states.get(npc_id)

    def get_influence(self, npc_id: str) -> EmotionalInfluence:
        """Decision biases for an NPC; neutral for unknown NPCs."""
        state = self.states.get(npc_id)
        if state is None:
            return EmotionalInfluence()
        return EmotionalInfluence.from_state(state)

    def get_emotional_summary(self, npc_id: str) -> str:
        state = self.states.get(npc_id)
        if state is None:
            return "Unknown emotional state"
        dominant = state.dominant()
        if not dominant:
            return "Emotionally balanced"
        return f"Feeling {' and '.join(dominant)}"

    def get_player_reputation(self, player_id: str) -> Optional[PlayerReputation]:
        return self.reputations.get(player_id)

    def get_npc_specific_reputation(self, player_id: str, npc_id: str) -> int:
        return self.reputations.npc_score(player_id, npc_id)

    def get_mood_history(self, npc_id: str, limit: int = 50) -> List[MoodTransition]:
        """Most recent transitions for an NPC, newest first."""
        transitions = self.mood_history.snapshot(lambda t: t.npc_id == npc_id)
        transitions.sort(key=lambda t: t.timestamp, reverse=True)
        return transitions[:limit]

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def cleanup(self, now: Optional[int] = None) -> int:
        """Sweep mood transitions older than the retention horizon."""
        return self.mood_history.sweep(now if now is not None else self._clock())

    def export_state(self) -> Dict[str, Any]:
        return {
            "emotional_states": {npc_id: s.to_dict() for npc_id, s in self.states.snapshot().items()},
            "reputations": [r.to_dict() for r in self.reputations.all()],
            "mood_history": [t.to_dict() for t in self.mood_history.snapshot()],
        }

    def load_state(self, data: Mapping[str, Any]) -> None:
        """Restore states, reputations and history exported by ``export_state``."""
        for npc_id, state_dict in data.get("emotional_states", {}).items():
            self.states.apply(state_load_event(npc_id, state_dict))

        self.reputations.load_records(
            [PlayerReputation.from_dict(r) for r in data.get("reputations", [])]
        )

        self.mood_history.clear()
        self.mood_history.extend(MoodTransition.from_dict(t) for t in data.get("mood_history", []))
        logger.info(
            f"Loaded {len(data.get('emotional_states', {}))} emotional states "
            f"and {len(self.reputations)} reputations"
        )

    def get_stats(self) -> Dict[str, Any]:
        return {
            "npcs": len(self.states.npc_ids()),
            "players": len(self.reputations),
            "triggers": len(self.catalog),
            "mood_history": self.mood_history.get_stats(),
        }
