"""
Tests for the analytics facade: sessions, actions, reports.
"""
import pytest

from npc_affect.analytics import AnalyticsEngine
from npc_affect.config import DAY_MS, RuntimeConfig
from npc_affect.errors import UnknownEntity
from npc_affect.types import ExploitStatus, SessionOutcome


@pytest.fixture
def analytics(clock):
    return AnalyticsEngine(clock=clock)


def record(analytics, clock, session_id, action_type="quest", params=None, success=True, player="0xabc", npc="npc_1"):
    clock.advance(1000)
    return analytics.record_action(session_id, player, npc, action_type, params or {"t": clock()}, {}, success, 10.0)


class TestSessions:

    def test_start_and_end(self, analytics, clock):
        session = analytics.start_session("0xabc", "npc_1", {"zone": "market"})
        assert session.outcome == SessionOutcome.ONGOING
        clock.advance(60000)

        ended = analytics.end_session(session.id, SessionOutcome.SUCCESS)
        assert ended.duration == 60000
        assert ended.outcome == SessionOutcome.SUCCESS
        assert ended.metadata == {"zone": "market"}

    def test_end_unknown_session(self, analytics):
        with pytest.raises(UnknownEntity):
            analytics.end_session("session_missing", SessionOutcome.FAILURE)

    def test_ensure_session_reuses_open_session(self, analytics):
        first = analytics.ensure_session("0xabc", "npc_1")
        assert analytics.ensure_session("0xabc", "npc_1") == first
        assert analytics.ensure_session("0xabc", "npc_2") != first

        analytics.end_session(first, SessionOutcome.ABANDONED)
        assert analytics.ensure_session("0xabc", "npc_1") != first

    def test_actions_attach_to_session(self, analytics, clock):
        session = analytics.start_session("0xabc", "npc_1")
        action, detections = record(analytics, clock, session.id)
        assert detections == []
        assert analytics.sessions.get(session.id).action_ids == [action.id]
        assert analytics.actions.for_session(session.id) == [action]


class TestReport:

    def test_report_aggregates(self, analytics, clock):
        session = analytics.start_session("0xabc", "npc_1")
        record(analytics, clock, session.id, "quest", {"questId": "q1"})
        record(analytics, clock, session.id, "quest", {"questId": "q1", "try": 2})
        record(analytics, clock, session.id, "quest", {"questId": "q2"}, success=False)
        record(analytics, clock, session.id, "trade", {"value": 10})
        analytics.record_dialogue_branch(session.id, "npc_1", "0xabc", ["hello", "haggle"], ["yes", "no"], "yes")
        clock.advance(1000)
        analytics.end_session(session.id, SessionOutcome.SUCCESS)

        report = analytics.generate_report()
        assert report.total_sessions == 1
        assert report.total_actions == 4
        assert report.success_rate == pytest.approx(0.75)
        assert report.average_session_duration == 5000
        assert report.most_used_quests == [{"quest_id": "q1", "count": 2}, {"quest_id": "q2", "count": 1}]
        assert report.most_common_dialogue_branches == [{"branch": "hello -> haggle", "count": 1}]
        assert report.npc_performance == [
            {"npc_id": "npc_1", "interactions": 4, "success_rate": 0.75, "player_satisfaction": 0.25}
        ]
        assert len(report.fairness_metrics) == 4

        data = report.to_dict()
        assert data["time_range"] == {"start": clock() - DAY_MS, "end": clock()}
        assert data["exploit_summary"]["total"] == 0

    def test_empty_report(self, analytics):
        report = analytics.generate_report()
        assert report.total_actions == 0
        assert report.success_rate == 0.0
        assert report.average_session_duration == 0.0
        assert report.most_used_quests == []

    def test_explicit_time_range(self, analytics, clock):
        session = analytics.start_session("0xabc", "npc_1")
        record(analytics, clock, session.id)
        cutoff = clock()
        record(analytics, clock, session.id)
        report = analytics.generate_report((cutoff + 1, clock()))
        assert report.total_actions == 1
        assert report.total_sessions == 0


class TestEmergentBehaviors:

    def test_popular_dialogue_path(self, analytics):
        for _ in range(11):
            analytics.record_dialogue_branch("s", "npc_1", "0xabc", ["greet", "bribe"], ["a"], "a")
        behaviors = analytics.detect_emergent_behaviors()
        assert behaviors == [{
            "pattern": "dialogue_path_greet -> bribe",
            "frequency": 11,
            "description": "Popular dialogue path: greet -> bribe",
        }]

    def test_ten_paths_is_not_emergent(self, analytics):
        for _ in range(10):
            analytics.record_dialogue_branch("s", "npc_1", "0xabc", ["greet"], ["a"], "a")
        assert analytics.detect_emergent_behaviors() == []

    def test_common_opening_sequence(self, analytics, clock):
        for i in range(6):
            player = f"0x{i}"
            session = analytics.start_session(player, "npc_1")
            for action_type in ("trade", "quest", "duel"):
                record(analytics, clock, session.id, action_type, player=player, success=False)

        patterns = [b["pattern"] for b in analytics.detect_emergent_behaviors()]
        assert patterns == ["action_sequence_trade -> quest -> duel"]


class TestMaintenance:

    def test_cleanup(self, clock):
        analytics = AnalyticsEngine(config=RuntimeConfig(retention_ms=DAY_MS), clock=clock)
        session = analytics.start_session("0xabc", "npc_1")
        record(analytics, clock, session.id)
        analytics.record_dialogue_branch(session.id, "npc_1", "0xabc", ["a"], ["b"], "b")
        clock.advance(2 * DAY_MS)

        removed = analytics.cleanup()
        assert removed == {"actions": 1, "sessions": 1, "dialogue_branches": 1, "exploits": 0}
        assert analytics.get_stats() == {"actions": 0, "sessions": 0, "dialogue_branches": 0, "exploits": 0}

    def test_update_exploit_status(self, analytics, clock):
        session = analytics.start_session("0xabc", "npc_1")
        analytics.record_action(session.id, "0xabc", "npc_1", "duel", {"a": 1}, {}, False, 1.0)
        _, detections = analytics.record_action(session.id, "0xabc", "npc_1", "duel", {"a": 2}, {}, False, 1.0)
        assert [d.pattern for d in detections] == ["impossible_timing"]

        updated = analytics.update_exploit_status(detections[0].id, ExploitStatus.INVESTIGATING)
        assert updated.status == ExploitStatus.INVESTIGATING
        assert analytics.get_exploit_summary()["total"] == 1
