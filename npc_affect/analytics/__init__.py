# Streaming analytics over the action flow
from .action_log import ActionLog, SessionLog, DialogueLog
from .exploit_detector import ExploitDetector, ExploitPattern
from .fairness import FairnessMonitor, compute_metrics
from .engine import AnalyticsEngine, AnalyticsReport

__all__ = [
    "ActionLog",
    "SessionLog",
    "DialogueLog",
    "ExploitDetector",
    "ExploitPattern",
    "FairnessMonitor",
    "compute_metrics",
    "AnalyticsEngine",
    "AnalyticsReport",
]
