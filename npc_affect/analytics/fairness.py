"""
Fairness metrics over the action, session and exploit logs.

``compute_metrics`` is a pure function of its inputs; ``FairnessMonitor``
holds the latest snapshot, replaced (never accumulated) on each recompute.
"""
from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from ..config import DAY_MS
from ..types import ExploitDetection, FairnessMetric, GameAction, GameSession, MetricStatus
from ..util import now_ms

logger = logging.getLogger(__name__)

COMPETITIVE_ACTIONS = ("duel", "quest")

WIN_RATE_VARIANCE_MAX = 0.1
MIN_SESSION_DURATION_MS = 300000
SUCCESS_RATE_CRITICAL = 0.3
SUCCESS_RATE_WARNING = 0.5
EXPLOIT_RATE_MAX = 0.01


def variance(values: Sequence[float]) -> float:
    """Population variance; 0 for an empty sequence."""
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return sum((v - mean) ** 2 for v in values) / len(values)


def player_win_rates(actions: Iterable[GameAction]) -> Dict[str, float]:
    """Per-player success fraction over duel and quest actions."""
    wins: Dict[str, int] = defaultdict(int)
    totals: Dict[str, int] = defaultdict(int)
    for action in actions:
        if action.action_type in COMPETITIVE_ACTIONS:
            totals[action.player_id] += 1
            if action.success:
                wins[action.player_id] += 1
    return {player: wins[player] / total for player, total in totals.items()}


def compute_metrics(
    actions: Sequence[GameAction],
    sessions: Sequence[GameSession],
    exploits: Sequence[ExploitDetection],
    now: Optional[int] = None,
) -> List[FairnessMetric]:
    """Compute all four fairness metrics together."""
    now = now if now is not None else now_ms()

    win_rate_variance = variance(list(player_win_rates(actions).values()))

    durations = [s.duration for s in sessions if s.duration]
    avg_duration = sum(durations) / len(durations) if durations else 0.0

    total_actions = len(actions)
    success_rate = sum(1 for a in actions if a.success) / total_actions if total_actions else 0.0
    if success_rate < SUCCESS_RATE_CRITICAL:
        success_status = MetricStatus.CRITICAL
    elif success_rate < SUCCESS_RATE_WARNING:
        success_status = MetricStatus.WARNING
    else:
        success_status = MetricStatus.HEALTHY

    recent_exploits = sum(1 for e in exploits if now - e.timestamp < DAY_MS)
    exploit_rate = recent_exploits / max(1, total_actions)

    return [
        FairnessMetric(
            name="win_rate_variance",
            value=win_rate_variance,
            threshold=WIN_RATE_VARIANCE_MAX,
            status=MetricStatus.WARNING if win_rate_variance > WIN_RATE_VARIANCE_MAX else MetricStatus.HEALTHY,
            description="Variance in player win rates - high variance may indicate unfairness",
            timestamp=now,
        ),
        FairnessMetric(
            name="average_session_duration",
            value=avg_duration,
            threshold=MIN_SESSION_DURATION_MS,
            status=MetricStatus.WARNING if avg_duration < MIN_SESSION_DURATION_MS else MetricStatus.HEALTHY,
            description="Average session duration - too short may indicate poor engagement",
            timestamp=now,
        ),
        FairnessMetric(
            name="overall_success_rate",
            value=success_rate,
            threshold=SUCCESS_RATE_CRITICAL,
            status=success_status,
            description="Overall action success rate - too low may indicate difficulty issues",
            timestamp=now,
        ),
        FairnessMetric(
            name="exploit_detection_rate",
            value=exploit_rate,
            threshold=EXPLOIT_RATE_MAX,
            status=MetricStatus.WARNING if exploit_rate > EXPLOIT_RATE_MAX else MetricStatus.HEALTHY,
            description="Rate of exploit detection - high rate may indicate security issues",
            timestamp=now,
        ),
    ]


class FairnessMonitor:
    """
    Holds the most recent fairness snapshot.

    ``source`` returns (actions, sessions, exploits) copies; it is called on
    every recompute so the monitor never touches the live logs.
    """

    def __init__(
        self,
        source: Callable[[], tuple],
        clock: Callable[[], int] = now_ms,
    ):
        self._source = source
        self._clock = clock
        self._latest: List[FairnessMetric] = []
        self._lock = threading.Lock()

    def recompute(self, now: Optional[int] = None) -> List[FairnessMetric]:
        actions, sessions, exploits = self._source()
        metrics = compute_metrics(actions, sessions, exploits, now if now is not None else self._clock())
        with self._lock:
            self._latest = metrics
        unhealthy = [m.name for m in metrics if m.status != MetricStatus.HEALTHY]
        if unhealthy:
            logger.info(f"Fairness recomputed, not healthy: {', '.join(unhealthy)}")
        else:
            logger.debug("Fairness recomputed, all metrics healthy")
        return list(metrics)

    @property
    def latest(self) -> List[FairnessMetric]:
        with self._lock:
            return list(self._latest)
