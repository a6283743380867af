"""
Tests for the emotion engine.
"""
import asyncio

import pytest

from npc_affect.collaborators import InMemoryMemoryStore, LoggingNotifier, MemoryType
from npc_affect.config import DAY_MS, PRESETS, RuntimeConfig
from npc_affect.emotion_engine import EmotionalInfluence, EmotionEngine, apply_personality_modifiers
from npc_affect.errors import UnknownEntity
from npc_affect.triggers import EmotionTrigger, TriggerCatalog
from npc_affect.types import EmotionalState


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def engine(clock):
    return EmotionEngine(clock=clock)


class BrokenNotifier:
    async def notify_mood_transition(self, transition):
        raise ConnectionError("socket closed")


class TestInitialization:

    def test_archetype_base_profile(self, engine):
        state = engine.initialize_npc_emotion("w", "warrior")
        assert state == PRESETS["warrior"].base_state

    def test_unknown_archetype_falls_back_to_balanced(self, engine):
        assert engine.initialize_npc_emotion("x", "dragon") == EmotionalState()

    def test_personality_modifiers(self, engine):
        state = engine.initialize_npc_emotion("m", "merchant", PRESETS["merchant"].personality)
        # friendly 70 -> factor 0.4
        assert state.happiness == 78
        assert state.trust == 66
        assert state.anger == 30

    def test_modifiers_clamp(self):
        state = apply_personality_modifiers(EmotionalState(happiness=95), {"cheerful": 100})
        assert state.happiness == 100
        assert state.sadness == 35

    def test_reinitialize_replaces_state(self, engine):
        engine.initialize_npc_emotion("npc", "warrior")
        engine.initialize_npc_emotion("npc", "balanced")
        assert engine.get_emotional_state("npc") == EmotionalState()


class TestProcessInteraction:
    """Test trigger application."""

    def test_gift(self, engine):
        engine.initialize_npc_emotion("npc_1", "balanced")
        result = run(engine.process_interaction("npc_1", "0xabc", "gift_received", {"value": 10}))

        assert result.matched
        assert result.new_state.happiness == 70
        assert result.new_state.trust == 65
        assert result.new_state.excitement == 60
        assert result.new_state.anger == 50
        assert result.reputation_delta == 30
        assert result.transition.trigger == "gift_received"
        assert result.transition.intensity == 30
        assert result.transition.from_state == EmotionalState()

        assert engine.get_npc_specific_reputation("0xabc", "npc_1") == 30
        assert engine.get_player_reputation("0xabc").global_score == 30
        assert len(engine.get_mood_history("npc_1")) == 1

    def test_no_match_leaves_everything_unchanged(self, engine):
        engine.initialize_npc_emotion("npc_1", "balanced")
        result = run(engine.process_interaction("npc_1", "0xabc", "gift_received", {"value": 0}))

        assert not result.matched
        assert result.reputation_delta == 0
        assert result.new_state == EmotionalState()
        assert engine.get_player_reputation("0xabc") is None
        assert engine.get_mood_history("npc_1") == []
        assert engine.metrics.get_counter("interactions.no_match") == 1

    def test_no_match_twice_is_idempotent(self, engine):
        engine.initialize_npc_emotion("npc_1", "merchant")
        first = run(engine.process_interaction("npc_1", "0xabc", "unheard_of", {}))
        second = run(engine.process_interaction("npc_1", "0xabc", "unheard_of", {}))
        assert first.new_state.to_dict() == second.new_state.to_dict() == PRESETS["merchant"].base_state.to_dict()

    def test_zero_trigger_has_zero_intensity(self):
        engine = EmotionEngine(catalog=TriggerCatalog([EmotionTrigger(event="wave")]))
        engine.initialize_npc_emotion("npc_1", "balanced")
        result = run(engine.process_interaction("npc_1", "0xabc", "wave", {}))
        assert result.new_state == EmotionalState()
        assert all(t.intensity == 0 for t in engine.get_mood_history("npc_1"))

    def test_unknown_npc(self, engine):
        with pytest.raises(UnknownEntity):
            run(engine.process_interaction("ghost", "0xabc", "gift_received", {"value": 10}))

    def test_values_stay_bounded(self, engine):
        engine.initialize_npc_emotion("w", "warrior")
        for _ in range(3):
            result = run(engine.process_interaction("w", "0xabc", "player_attacked", {"target": "npc"}))
        assert result.new_state.anger == 100
        assert result.new_state.trust == 0
        assert result.new_state.happiness == 15

    def test_concurrent_interactions_do_not_lose_updates(self, engine):
        engine.initialize_npc_emotion("npc_1", "balanced")

        async def main():
            await asyncio.gather(*[
                engine.process_interaction("npc_1", f"0x{i}", "player_helped", {"success": True})
                for i in range(3)
            ])

        run(main())
        state = engine.get_emotional_state("npc_1")
        assert state.happiness == 95
        assert state.trust == 80
        assert state.sadness == 35
        assert len(engine.get_mood_history("npc_1")) == 3

    def test_interaction_waits_for_npc_lock(self, engine):
        engine.initialize_npc_emotion("npc_1", "balanced")
        engine.initialize_npc_emotion("npc_2", "balanced")

        async def main():
            lock = engine._locks.lock("npc_1")
            await lock.acquire()
            try:
                blocked = asyncio.ensure_future(
                    engine.process_interaction("npc_1", "0xa", "gift_received", {"value": 10})
                )
                other = await engine.process_interaction("npc_2", "0xa", "gift_received", {"value": 10})
                for _ in range(5):
                    await asyncio.sleep(0)
                assert not blocked.done()
                assert engine.get_emotional_state("npc_1").happiness == 50
                assert engine.get_mood_history("npc_1") == []
            finally:
                lock.release()
            return other, await blocked

        other, result = run(main())
        assert other.new_state.happiness == 70
        assert result.new_state.happiness == 70
        assert len(engine.get_mood_history("npc_1")) == 1

    def test_decay_waits_for_npc_lock(self, engine):
        engine.initialize_npc_emotion("w", "warrior")

        async def main():
            lock = engine._locks.lock("w")
            await lock.acquire()
            try:
                pending = asyncio.ensure_future(engine.apply_decay("w", 5))
                await asyncio.sleep(0)
                assert not pending.done()
                assert engine.get_emotional_state("w").anger == 70
            finally:
                lock.release()
            return await pending

        assert run(main()).anger == 60

    def test_mood_history_newest_first(self, engine, clock):
        engine.initialize_npc_emotion("npc_1", "balanced")
        for action, ctx in [("gift_received", {"value": 1}), ("promise_broken", {}), ("quest_failed", {})]:
            run(engine.process_interaction("npc_1", "0xabc", action, ctx))
            clock.advance(1000)

        history = engine.get_mood_history("npc_1", limit=2)
        assert [t.trigger for t in history] == ["quest_failed", "promise_broken"]
        assert engine.get_mood_history("other") == []


class TestSignificantTransitions:
    """Test the notifier and memory hooks."""

    def test_significant_transition_reaches_hooks(self, clock):
        notifier = LoggingNotifier()
        memory = InMemoryMemoryStore()
        engine = EmotionEngine(notifier=notifier, memory=memory, clock=clock)
        engine.initialize_npc_emotion("npc_1", "balanced")

        run(engine.process_interaction("npc_1", "0xabc", "player_attacked", {"target": "npc"}))

        assert len(notifier.sent) == 1
        memories = run(memory.get_recent_memories("npc_1"))
        assert len(memories) == 1
        assert memories[0].memory_type == MemoryType.EVENT
        assert memories[0].emotional_weight == 75
        assert memories[0].tags == ["player_attacked", "mood_transition"]
        assert not memories[0].is_positive

    def test_minor_transition_skips_hooks(self, clock):
        notifier = LoggingNotifier()
        engine = EmotionEngine(notifier=notifier, clock=clock)
        engine.initialize_npc_emotion("npc_1", "balanced")

        run(engine.process_interaction("npc_1", "0xabc", "gift_received", {"value": 10}))
        assert len(notifier.sent) == 0

    def test_threshold_is_strict(self, clock):
        notifier = LoggingNotifier()
        engine = EmotionEngine(notifier=notifier, config=RuntimeConfig(significance_threshold=50), clock=clock)
        engine.initialize_npc_emotion("npc_1", "balanced")

        run(engine.process_interaction("npc_1", "0xabc", "promise_broken", {}))
        assert len(notifier.sent) == 0

    def test_hook_failure_is_not_raised(self, clock):
        engine = EmotionEngine(notifier=BrokenNotifier(), clock=clock)
        engine.initialize_npc_emotion("npc_1", "balanced")

        result = run(engine.process_interaction("npc_1", "0xabc", "player_attacked", {"target": "npc"}))
        assert result.matched
        assert engine.get_emotional_state("npc_1").anger == 80
        assert engine.metrics.get_error_count("emotion.notifier_failure") == 1


class TestDecay:

    def test_half_decay(self, engine):
        engine.initialize_npc_emotion("w", "warrior")
        state = run(engine.apply_decay("w", 5))
        assert state.anger == 60
        assert state.fear == 35
        assert state.excitement == 65

    def test_zero_hours_is_noop(self, engine):
        engine.initialize_npc_emotion("w", "warrior")
        assert run(engine.apply_decay("w", 0)) == PRESETS["warrior"].base_state

    def test_long_absence_overshoots_neutral(self, engine):
        engine.initialize_npc_emotion("w", "warrior")
        state = run(engine.apply_decay("w", 15))
        assert (state.anger, state.fear) == (40, 65)
        assert state.excitement == 35

    def test_overshoot_is_clamped(self, engine):
        engine.initialize_npc_emotion("w", "warrior")
        state = run(engine.apply_decay("w", 100))
        # anger 70 - 20 * 10 and fear 20 + 30 * 10
        assert state.anger == 0
        assert state.fear == 100

    def test_neutral_is_fixed_point_for_any_duration(self, engine):
        engine.initialize_npc_emotion("b", "balanced")
        assert run(engine.apply_decay("b", 250)) == EmotionalState()

    def test_neutral_is_fixed_point(self, engine):
        engine.initialize_npc_emotion("b", "balanced")
        assert run(engine.apply_decay("b", 3)) == EmotionalState()

    def test_unknown_npc(self, engine):
        with pytest.raises(UnknownEntity):
            run(engine.apply_decay("ghost", 1))


class TestReads:

    def test_influence(self, engine):
        assert engine.get_influence("ghost") == EmotionalInfluence()

        engine.initialize_npc_emotion("m", "merchant")
        influence = engine.get_influence("m")
        assert influence.aggressiveness == 45.0
        assert influence.trustfulness == 65.0
        assert influence.helpfulness == 75.0
        assert influence.risk_taking == 60.0

    def test_summary(self, engine):
        assert engine.get_emotional_summary("ghost") == "Unknown emotional state"

        engine.initialize_npc_emotion("b", "balanced")
        assert engine.get_emotional_summary("b") == "Emotionally balanced"

        engine.initialize_npc_emotion("w", "warrior")
        assert engine.get_emotional_summary("w") == "Feeling excitement"
        run(engine.process_interaction("w", "0xabc", "player_attacked", {"target": "npc"}))
        assert engine.get_emotional_summary("w") == "Feeling anger and excitement"

    def test_unknown_npc_state_is_none(self, engine):
        assert engine.get_emotional_state("ghost") is None


class TestMaintenance:

    def test_cleanup_sweeps_old_transitions(self, engine, clock):
        engine.initialize_npc_emotion("npc_1", "balanced")
        run(engine.process_interaction("npc_1", "0xabc", "gift_received", {"value": 10}))
        clock.advance(8 * DAY_MS)
        run(engine.process_interaction("npc_1", "0xabc", "gift_received", {"value": 10}))

        assert engine.cleanup() == 1
        assert len(engine.get_mood_history("npc_1")) == 1

    def test_export_and_load(self, engine, clock):
        engine.initialize_npc_emotion("npc_1", "warrior")
        run(engine.process_interaction("npc_1", "0xabc", "gift_received", {"value": 10}))
        data = engine.export_state()

        restored = EmotionEngine(clock=clock)
        restored.load_state(data)

        assert restored.get_emotional_state("npc_1") == engine.get_emotional_state("npc_1")
        assert restored.get_npc_specific_reputation("0xabc", "npc_1") == 30
        assert len(restored.get_mood_history("npc_1")) == 1
        assert restored.get_stats()["npcs"] == 1
