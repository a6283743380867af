"""
Streaming exploit detection over the action log.

Every recorded action re-runs a fixed set of pattern checks against the
acting player's history. A positive check is evidence, not proof: it is
stored as an ExploitDetection with status ``detected`` for moderation.
"""
from __future__ import annotations

import copy
import json
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from ..config import DAY_MS, RuntimeConfig
from ..errors import UnknownEntity
from ..logging_config import get_logger
from ..metrics import MetricsCollector
from ..types import ExploitDetection, ExploitStatus, GameAction, Severity
from ..util import new_id, now_ms
from .action_log import ActionLog

logger = logging.getLogger(__name__)
slog = get_logger("npc_affect.exploits")

EVIDENCE_ACTIONS = 10


def _params_key(action: GameAction) -> str:
    return json.dumps(action.parameters, sort_keys=True, default=str)


def rapid_fire(history: Sequence[GameAction], config: RuntimeConfig) -> bool:
    """More than N actions within the window ending at the latest action."""
    if not history:
        return False
    latest = history[-1].timestamp
    in_window = sum(1 for a in history if latest - a.timestamp < config.rapid_fire_window_ms)
    return in_window > config.rapid_fire_max_actions


def identical_parameters(history: Sequence[GameAction], config: RuntimeConfig) -> bool:
    """The trailing window (at least N actions) all carry the same parameters."""
    recent = history[-config.identical_window:]
    if len(recent) < config.identical_min_actions:
        return False
    return len({_params_key(a) for a in recent}) == 1


def impossible_timing(history: Sequence[GameAction], config: RuntimeConfig) -> bool:
    """The last two actions are closer together than humanly possible."""
    if len(history) < 2:
        return False
    return history[-1].timestamp - history[-2].timestamp < config.impossible_timing_ms


def unusual_success_rate(history: Sequence[GameAction], config: RuntimeConfig) -> bool:
    if len(history) < config.success_rate_min_actions:
        return False
    successes = sum(1 for a in history if a.success)
    return successes / len(history) > config.success_rate_max


@dataclass(frozen=True)
class ExploitPattern:
    name: str
    description: str
    severity: Severity
    check: Callable[[Sequence[GameAction], RuntimeConfig], bool]


DEFAULT_PATTERNS: List[ExploitPattern] = [
    ExploitPattern(
        name="rapid_fire_actions",
        description="Player performing actions too quickly",
        severity=Severity.MEDIUM,
        check=rapid_fire,
    ),
    ExploitPattern(
        name="identical_parameters",
        description="Repeated identical actions suggesting automation",
        severity=Severity.HIGH,
        check=identical_parameters,
    ),
    ExploitPattern(
        name="impossible_timing",
        description="Actions completed faster than humanly possible",
        severity=Severity.HIGH,
        check=impossible_timing,
    ),
    ExploitPattern(
        name="unusual_success_rate",
        description="Suspiciously high success rate",
        severity=Severity.MEDIUM,
        check=unusual_success_rate,
    ),
]


class ExploitDetector:
    """
    Records actions and flags suspicious per-player patterns.

    Detections are not de-duplicated: a pattern that keeps holding is
    flagged again on every action.

    Example:
        >>> detector = ExploitDetector(ActionLog())
        >>> detections = detector.record_action(action)
        >>> [d.pattern for d in detections]
        []
    """

    def __init__(
        self,
        action_log: ActionLog,
        config: Optional[RuntimeConfig] = None,
        patterns: Optional[Sequence[ExploitPattern]] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.action_log = action_log
        self.config = config or RuntimeConfig()
        self.patterns = list(patterns or DEFAULT_PATTERNS)
        self.metrics = metrics or MetricsCollector()
        self._clock = clock
        self._exploits: List[ExploitDetection] = []
        self._lock = threading.RLock()

    def record_action(self, action: GameAction) -> List[ExploitDetection]:
        """Append the action, then run every pattern against the player's history."""
        self.action_log.append(action)
        history = self.action_log.for_player(action.player_id)

        detections = []
        for pattern in self.patterns:
            if not pattern.check(history, self.config):
                continue
            detection = ExploitDetection(
                id=new_id("exploit"),
                pattern=pattern.name,
                severity=pattern.severity,
                player_id=action.player_id,
                npc_id=action.npc_id,
                description=pattern.description,
                evidence={
                    "pattern": pattern.name,
                    "recent_actions": [a.to_dict() for a in history[-EVIDENCE_ACTIONS:]],
                    "trigger_action": action.to_dict(),
                },
                timestamp=self._clock(),
            )
            detections.append(detection)
            self._handle_detection(detection)

        if detections:
            with self._lock:
                self._exploits.extend(detections)
        return detections

    def _handle_detection(self, detection: ExploitDetection) -> None:
        self.metrics.record_detection(detection.pattern)
        level = logging.WARNING if detection.severity in (Severity.HIGH, Severity.CRITICAL) else logging.INFO
        slog.event(
            "exploit_detected",
            f"Exploit detected: {detection.pattern} ({detection.severity.value})",
            level=level,
            subsystem="analytics",
            npc_id=detection.npc_id,
            player_id=detection.player_id,
            exploit_id=detection.id,
        )

    def get_exploits(self, start_ms: Optional[int] = None, end_ms: Optional[int] = None) -> List[ExploitDetection]:
        with self._lock:
            exploits = copy.deepcopy(self._exploits)
        if start_ms is not None:
            exploits = [e for e in exploits if e.timestamp >= start_ms]
        if end_ms is not None:
            exploits = [e for e in exploits if e.timestamp <= end_ms]
        return exploits

    def get_exploit_summary(self, now: Optional[int] = None) -> Dict:
        """Total, counts by severity and the ten most recent detections of the last 24h."""
        now = now if now is not None else self._clock()
        exploits = self.get_exploits()

        by_severity = {s.value: 0 for s in Severity}
        for e in exploits:
            by_severity[e.severity.value] += 1

        recent = [e for e in exploits if now - e.timestamp < DAY_MS]
        recent.sort(key=lambda e: e.timestamp, reverse=True)

        return {
            "total": len(exploits),
            "by_severity": by_severity,
            "recent": [e.to_dict() for e in recent[:10]],
        }

    def update_exploit_status(
        self,
        exploit_id: str,
        status: ExploitStatus,
        action_taken: Optional[str] = None,
    ) -> ExploitDetection:
        """
        Move a detection through moderation.

        Raises:
            UnknownEntity: No detection with this id.
        """
        status = ExploitStatus(status)
        with self._lock:
            for exploit in self._exploits:
                if exploit.id == exploit_id:
                    exploit.status = status
                    if action_taken is not None:
                        exploit.action_taken = action_taken
                    logger.info(f"Exploit {exploit_id} marked {status.value}")
                    return copy.deepcopy(exploit)
        raise UnknownEntity("Exploit", exploit_id)

    def sweep(self, now: int) -> int:
        cutoff = now - self.config.retention_ms
        with self._lock:
            before = len(self._exploits)
            self._exploits = [e for e in self._exploits if e.timestamp >= cutoff]
            return before - len(self._exploits)
