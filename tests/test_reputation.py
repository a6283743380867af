"""
Tests for player reputation.
"""
import asyncio

import pytest

from npc_affect.emotion_engine import EmotionEngine
from npc_affect.reputation import ReputationStore, apply_impact
from npc_affect.types import PlayerReputation


class TestApplyImpact:
    """Test the trait and score rules."""

    def test_positive_impact(self):
        rep = PlayerReputation(address="0xabc")
        apply_impact(rep, "npc_1", 30, timestamp=5)

        assert rep.global_score == 30
        assert rep.npc_score("npc_1") == 30
        assert rep.traits.trustworthiness == pytest.approx(53.0)
        assert rep.traits.respect == pytest.approx(53.0)
        assert rep.traits.reliability == pytest.approx(51.5)
        assert rep.traits.aggression == 50.0
        assert rep.traits.generosity == 50.0
        assert rep.interactions == 1
        assert rep.last_updated == 5

    def test_negative_impact(self):
        rep = PlayerReputation(address="0xabc")
        apply_impact(rep, "npc_1", -75)

        assert rep.global_score == -75
        assert rep.traits.aggression == pytest.approx(57.5)
        assert rep.traits.trustworthiness == pytest.approx(42.5)
        assert rep.traits.respect == pytest.approx(42.5)
        assert rep.traits.reliability == 50.0

    def test_zero_impact_counts_interaction_only(self):
        rep = PlayerReputation(address="0xabc")
        apply_impact(rep, "npc_1", 0)
        assert rep.global_score == 0
        assert rep.npc_score("npc_1") == 0
        assert rep.traits.trustworthiness == 50.0
        assert rep.interactions == 1

    def test_scores_and_traits_are_clamped(self):
        rep = PlayerReputation(address="0xabc")
        for _ in range(3):
            apply_impact(rep, "npc_1", 600)

        assert rep.global_score == 1000
        assert rep.npc_score("npc_1") == 500
        assert rep.traits.trustworthiness == 100.0

        for _ in range(5):
            apply_impact(rep, "npc_1", -600)
        assert rep.global_score == -1000
        assert rep.npc_score("npc_1") == -500
        assert rep.traits.respect == 0.0

    def test_npc_scores_are_independent(self):
        rep = PlayerReputation(address="0xabc")
        apply_impact(rep, "npc_1", 30)
        apply_impact(rep, "npc_2", -60)
        assert rep.npc_score("npc_1") == 30
        assert rep.npc_score("npc_2") == -60
        assert rep.global_score == -30


class TestReputationStore:

    def test_lazy_creation(self):
        store = ReputationStore()
        assert store.get("0xabc") is None
        assert store.npc_score("0xabc", "npc_1") == 0

        rep = store.apply("0xabc", "npc_1", 30)
        assert rep.global_score == 30
        assert len(store) == 1

    def test_get_returns_copy(self):
        store = ReputationStore()
        store.apply("0xabc", "npc_1", 30)
        rep = store.get("0xabc")
        rep.global_score = 999
        assert store.get("0xabc").global_score == 30

    def test_persists_to_disk(self, tmp_path):
        path = str(tmp_path / "reputations.json")
        store = ReputationStore(path)
        store.apply("0xabc", "npc_1", -60)

        reloaded = ReputationStore(path)
        assert reloaded.npc_score("0xabc", "npc_1") == -60
        assert reloaded.get("0xabc").traits.aggression == pytest.approx(56.0)

    def test_failed_save_keeps_update(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        store = ReputationStore(str(blocker / "reputations.json"))

        rep = store.apply("0xabc", "npc_1", 30)

        assert rep.global_score == 30
        assert store.npc_score("0xabc", "npc_1") == 30
        assert store.save_failures == 1
        assert store.metrics.get_error_count("reputation.save") == 1

    def test_failed_save_does_not_break_interaction(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        engine = EmotionEngine(reputations=ReputationStore(str(blocker / "reputations.json")))
        engine.initialize_npc_emotion("npc_1", "balanced")

        result = asyncio.run(engine.process_interaction("npc_1", "0xabc", "gift_received", {"value": 10}))

        assert result.transition is not None
        assert len(engine.get_mood_history("npc_1")) == 1
        assert engine.get_npc_specific_reputation("0xabc", "npc_1") == 30
