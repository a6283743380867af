"""
Analytics facade: sessions, actions, exploits, fairness and reports.
"""
from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..config import DAY_MS, RuntimeConfig
from ..metrics import MetricsCollector
from ..types import (
    DialogueBranch,
    ExploitDetection,
    ExploitStatus,
    FairnessMetric,
    GameAction,
    GameSession,
    SessionOutcome,
)
from ..util import new_id, now_ms
from .action_log import ActionLog, DialogueLog, SessionLog
from .exploit_detector import ExploitDetector
from .fairness import FairnessMonitor

logger = logging.getLogger(__name__)

EMERGENT_DIALOGUE_MIN = 10
EMERGENT_SEQUENCE_MIN = 5
TOP_N = 10


@dataclass
class AnalyticsReport:
    """Aggregated view of one time range."""
    time_range: Tuple[int, int]
    total_sessions: int
    total_actions: int
    average_session_duration: float
    success_rate: float
    most_used_quests: List[Dict[str, Any]]
    most_common_dialogue_branches: List[Dict[str, Any]]
    exploits_detected: List[ExploitDetection]
    fairness_metrics: List[FairnessMetric]
    emergent_behaviors: List[Dict[str, Any]]
    npc_performance: List[Dict[str, Any]]
    exploit_summary: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        start, end = self.time_range
        return {
            "time_range": {"start": start, "end": end},
            "total_sessions": self.total_sessions,
            "total_actions": self.total_actions,
            "average_session_duration": self.average_session_duration,
            "success_rate": self.success_rate,
            "most_used_quests": self.most_used_quests,
            "most_common_dialogue_branches": self.most_common_dialogue_branches,
            "exploits_detected": [e.to_dict() for e in self.exploits_detected],
            "fairness_metrics": [m.to_dict() for m in self.fairness_metrics],
            "emergent_behaviors": self.emergent_behaviors,
            "npc_performance": self.npc_performance,
            "exploit_summary": self.exploit_summary,
        }


class AnalyticsEngine:
    """
    Owns the action, session and dialogue logs, the exploit detector and
    the fairness monitor.

    Example:
        >>> analytics = AnalyticsEngine()
        >>> session = analytics.start_session("0xabc", "npc_1")
        >>> action, detections = analytics.record_action(
        ...     session.id, "0xabc", "npc_1", "quest", {"questId": "q1"}, {}, True, 120.0)
        >>> analytics.generate_report().total_actions
        1
    """

    def __init__(
        self,
        config: Optional[RuntimeConfig] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.config = config or RuntimeConfig()
        self.metrics = metrics or MetricsCollector()
        self._clock = clock

        self.actions = ActionLog(
            capacity=self.config.action_log_capacity,
            retention_ms=self.config.retention_ms,
        )
        self.sessions = SessionLog(retention_ms=self.config.retention_ms, clock=clock)
        self.dialogues = DialogueLog(
            capacity=self.config.action_log_capacity,
            retention_ms=self.config.retention_ms,
            clock=clock,
        )
        self.detector = ExploitDetector(self.actions, config=self.config, metrics=self.metrics, clock=clock)
        self.fairness = FairnessMonitor(self._fairness_inputs, clock=clock)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def start_session(
        self,
        player_id: str,
        npc_id: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> GameSession:
        return self.sessions.start_session(player_id, npc_id, metadata)

    def end_session(self, session_id: str, outcome: SessionOutcome) -> GameSession:
        return self.sessions.end_session(session_id, outcome)

    def ensure_session(self, player_id: str, npc_id: str) -> str:
        """Id of the ongoing session for (player, NPC), starting one if needed."""
        session_id = self.sessions.open_session_for(player_id, npc_id)
        if session_id is None:
            session_id = self.start_session(player_id, npc_id).id
        return session_id

    def record_action(
        self,
        session_id: str,
        player_id: str,
        npc_id: str,
        action_type: str,
        parameters: Dict[str, Any],
        result: Dict[str, Any],
        success: bool,
        execution_time: float,
        gas_used: Optional[int] = None,
        transaction_hash: Optional[str] = None,
    ) -> Tuple[GameAction, List[ExploitDetection]]:
        action = GameAction(
            id=new_id("action"),
            session_id=session_id,
            player_id=player_id,
            npc_id=npc_id,
            action_type=action_type,
            timestamp=self._clock(),
            parameters=dict(parameters),
            result=dict(result),
            success=success,
            execution_time=execution_time,
            gas_used=gas_used,
            transaction_hash=transaction_hash,
        )
        return action, self.record(action)

    def record(self, action: GameAction) -> List[ExploitDetection]:
        """Append a prebuilt action and run exploit detection on it."""
        self.sessions.attach_action(action.session_id, action.id)
        detections = self.detector.record_action(action)
        self.metrics.increment("actions.recorded")
        logger.debug(f"Recorded action {action.action_type} for player {action.player_id}")
        return detections

    def record_dialogue_branch(
        self,
        session_id: str,
        npc_id: str,
        player_id: str,
        branch_path: Sequence[str],
        choices: Sequence[str],
        selected_choice: str,
        emotional_context: Optional[Dict[str, Any]] = None,
    ) -> DialogueBranch:
        return self.dialogues.record(
            session_id, npc_id, player_id, branch_path, choices, selected_choice, emotional_context
        )

    # ------------------------------------------------------------------
    # Exploits and fairness
    # ------------------------------------------------------------------

    def get_exploit_summary(self) -> Dict[str, Any]:
        return self.detector.get_exploit_summary(self._clock())

    def update_exploit_status(
        self,
        exploit_id: str,
        status: ExploitStatus,
        action_taken: Optional[str] = None,
    ) -> ExploitDetection:
        return self.detector.update_exploit_status(exploit_id, status, action_taken)

    def _fairness_inputs(self) -> tuple:
        return self.actions.snapshot(), self.sessions.snapshot(), self.detector.get_exploits()

    def calculate_fairness_metrics(self) -> List[FairnessMetric]:
        return self.fairness.recompute()

    def detect_emergent_behaviors(self) -> List[Dict[str, Any]]:
        """Dialogue paths taken more than 10 times and opening sequences seen in more than 5 sessions."""
        behaviors: List[Dict[str, Any]] = []

        paths = Counter(b.path_key for b in self.dialogues.snapshot())
        for path, count in paths.items():
            if count > EMERGENT_DIALOGUE_MIN:
                behaviors.append({
                    "pattern": f"dialogue_path_{path}",
                    "frequency": count,
                    "description": f"Popular dialogue path: {path}",
                })

        sequences: Counter = Counter()
        for session in self.sessions.snapshot():
            opening = self.actions.for_session(session.id)[:3]
            if len(opening) == 3:
                sequences[" -> ".join(a.action_type for a in opening)] += 1
        for sequence, count in sequences.items():
            if count > EMERGENT_SEQUENCE_MIN:
                behaviors.append({
                    "pattern": f"action_sequence_{sequence}",
                    "frequency": count,
                    "description": f"Common action sequence: {sequence}",
                })

        return behaviors

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def generate_report(self, time_range: Optional[Tuple[int, int]] = None) -> AnalyticsReport:
        """Aggregate a time range (default: the last 24 hours)."""
        now = self._clock()
        start, end = time_range if time_range is not None else (now - DAY_MS, now)

        sessions = self.sessions.snapshot(start, end)
        actions = self.actions.snapshot(start, end)

        ended = [s.duration for s in sessions if s.duration]
        avg_duration = sum(ended) / len(ended) if ended else 0.0
        success_rate = sum(1 for a in actions if a.success) / len(actions) if actions else 0.0

        quest_counts = Counter(
            str(a.parameters.get("questId", "unknown")) for a in actions if a.action_type == "quest"
        )
        branch_counts = Counter(b.path_key for b in self.dialogues.snapshot(start, end))

        return AnalyticsReport(
            time_range=(start, end),
            total_sessions=len(sessions),
            total_actions=len(actions),
            average_session_duration=avg_duration,
            success_rate=success_rate,
            most_used_quests=[
                {"quest_id": q, "count": c} for q, c in quest_counts.most_common(TOP_N)
            ],
            most_common_dialogue_branches=[
                {"branch": b, "count": c} for b, c in branch_counts.most_common(TOP_N)
            ],
            exploits_detected=self.detector.get_exploits(start, end),
            fairness_metrics=self.fairness.recompute(now),
            emergent_behaviors=self.detect_emergent_behaviors(),
            npc_performance=self._npc_performance(actions),
            exploit_summary=self.detector.get_exploit_summary(now),
        )

    @staticmethod
    def _npc_performance(actions: Sequence[GameAction]) -> List[Dict[str, Any]]:
        interactions: Dict[str, int] = defaultdict(int)
        successes: Dict[str, int] = defaultdict(int)
        sessions: Dict[str, set] = defaultdict(set)
        for a in actions:
            interactions[a.npc_id] += 1
            if a.success:
                successes[a.npc_id] += 1
            sessions[a.npc_id].add(a.session_id)

        return [
            {
                "npc_id": npc_id,
                "interactions": count,
                "success_rate": successes[npc_id] / count,
                "player_satisfaction": len(sessions[npc_id]) / max(1, count),
            }
            for npc_id, count in interactions.items()
        ]

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def cleanup(self, now: Optional[int] = None) -> Dict[str, int]:
        """Sweep every log past the retention horizon."""
        now = now if now is not None else self._clock()
        removed = {
            "actions": self.actions.sweep(now),
            "sessions": self.sessions.sweep(now),
            "dialogue_branches": self.dialogues.sweep(now),
            "exploits": self.detector.sweep(now),
        }
        logger.info(f"Cleaned up analytics data: {removed}")
        return removed

    def get_stats(self) -> Dict[str, int]:
        return {
            "actions": len(self.actions),
            "sessions": len(self.sessions),
            "dialogue_branches": len(self.dialogues),
            "exploits": len(self.detector.get_exploits()),
        }
