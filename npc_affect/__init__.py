# Emotion, reputation and gameplay analytics runtime for NPCs
__version__ = "0.1.0"

from .config import RuntimeConfig, get_preset, list_presets
from .emotion_engine import EmotionEngine, EmotionalInfluence, InteractionResult
from .errors import NPCAffectError, ConfigError, UnknownEntity, UpstreamFailure, StageTimeout, PersistenceFailure
from .orchestrator import Task, TaskOrchestrator, TaskStage, FinalResult
from .triggers import TriggerCatalog, EmotionTrigger
from .types import EmotionalState, MoodTransition, PlayerReputation

__all__ = [
    "__version__",
    "RuntimeConfig",
    "get_preset",
    "list_presets",
    "EmotionEngine",
    "EmotionalInfluence",
    "InteractionResult",
    "NPCAffectError",
    "ConfigError",
    "UnknownEntity",
    "UpstreamFailure",
    "StageTimeout",
    "PersistenceFailure",
    "Task",
    "TaskOrchestrator",
    "TaskStage",
    "FinalResult",
    "TriggerCatalog",
    "EmotionTrigger",
    "EmotionalState",
    "MoodTransition",
    "PlayerReputation",
]
