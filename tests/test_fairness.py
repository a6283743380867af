"""
Tests for fairness metrics.
"""
import pytest

from conftest import make_action
from npc_affect.analytics.fairness import FairnessMonitor, compute_metrics, player_win_rates, variance
from npc_affect.types import ExploitDetection, GameSession, MetricStatus, Severity

T0 = 1_700_000_000_000


def by_name(metrics):
    return {m.name: m for m in metrics}


def actions(successes, total, player="0xplayer", action_type="trade"):
    return [
        make_action(T0 + i * 1000, player_id=player, action_type=action_type, success=i < successes)
        for i in range(total)
    ]


def session(duration):
    return GameSession(id=f"s{duration}", player_id="0xp", npc_id="n", start_time=T0,
                       end_time=T0 + duration, duration=duration)


def test_variance():
    assert variance([]) == 0.0
    assert variance([0.5, 0.5]) == 0.0
    assert variance([1.0, 0.0]) == pytest.approx(0.25)


def test_win_rates_only_count_competitive_actions():
    rates = player_win_rates(
        actions(1, 2, player="0xa", action_type="duel")
        + actions(0, 3, player="0xb", action_type="trade")
    )
    assert rates == {"0xa": 0.5}


class TestComputeMetrics:

    def test_empty_inputs(self):
        metrics = compute_metrics([], [], [], now=T0)
        assert [m.name for m in metrics] == [
            "win_rate_variance",
            "average_session_duration",
            "overall_success_rate",
            "exploit_detection_rate",
        ]
        m = by_name(metrics)
        assert m["win_rate_variance"].status == MetricStatus.HEALTHY
        assert m["average_session_duration"].value == 0.0
        assert m["average_session_duration"].status == MetricStatus.WARNING
        assert m["overall_success_rate"].status == MetricStatus.CRITICAL
        assert m["exploit_detection_rate"].status == MetricStatus.HEALTHY
        assert all(x.timestamp == T0 for x in metrics)

    @pytest.mark.parametrize("successes,status", [
        (15, MetricStatus.HEALTHY),
        (8, MetricStatus.WARNING),
        (5, MetricStatus.CRITICAL),
    ])
    def test_success_rate_bands(self, successes, status):
        m = by_name(compute_metrics(actions(successes, 20), [], [], now=T0))
        assert m["overall_success_rate"].value == pytest.approx(successes / 20)
        assert m["overall_success_rate"].status == status

    def test_win_rate_variance_warning(self):
        duels = actions(4, 4, player="0xa", action_type="duel") + actions(0, 4, player="0xb", action_type="duel")
        m = by_name(compute_metrics(duels, [], [], now=T0))
        assert m["win_rate_variance"].value == pytest.approx(0.25)
        assert m["win_rate_variance"].status == MetricStatus.WARNING

    def test_session_duration_ignores_open_sessions(self):
        open_session = GameSession(id="open", player_id="0xp", npc_id="n", start_time=T0)
        m = by_name(compute_metrics([], [session(600000), open_session], [], now=T0))
        assert m["average_session_duration"].value == 600000
        assert m["average_session_duration"].status == MetricStatus.HEALTHY

    def test_session_duration_ignores_zero_length_sessions(self):
        m = by_name(compute_metrics([], [session(600000), session(0)], [], now=T0))
        assert m["average_session_duration"].value == 600000

    def test_exploit_rate_counts_last_day_only(self):
        exploits = [
            ExploitDetection(id=f"e{i}", pattern="impossible_timing", severity=Severity.HIGH,
                             player_id="0xp", description="", evidence={}, timestamp=ts)
            for i, ts in enumerate([T0, T0 - 2 * 86400000])
        ]
        m = by_name(compute_metrics(actions(10, 20), [], exploits, now=T0))
        assert m["exploit_detection_rate"].value == pytest.approx(1 / 20)
        assert m["exploit_detection_rate"].status == MetricStatus.WARNING


class TestFairnessMonitor:

    def test_latest_is_replaced(self, clock):
        data = {"actions": actions(15, 20)}
        monitor = FairnessMonitor(lambda: (data["actions"], [], []), clock=clock)
        assert monitor.latest == []

        monitor.recompute()
        assert by_name(monitor.latest)["overall_success_rate"].status == MetricStatus.HEALTHY

        data["actions"] = actions(5, 20)
        monitor.recompute()
        assert len(monitor.latest) == 4
        assert by_name(monitor.latest)["overall_success_rate"].status == MetricStatus.CRITICAL
