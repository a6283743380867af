"""
Configuration for the NPC runtime.

Two kinds of configuration live here:

- ``RuntimeConfig``: thresholds, intervals and timeouts, loadable from
  YAML/JSON files and overridable through ``NPC_AFFECT_*`` environment
  variables.
- Archetype presets: the emotional base profile and personality trait
  values an NPC starts from.
"""
from __future__ import annotations

import os
import json
import logging
from dataclasses import dataclass, field, asdict, fields
from typing import Dict, List, Optional, Any

import yaml

from .errors import ConfigError
from .types import EmotionalState

logger = logging.getLogger(__name__)

ENV_PREFIX = "NPC_AFFECT_"

DAY_MS = 24 * 60 * 60 * 1000


@dataclass
class RuntimeConfig:
    """
    Tunables for the emotion engine, analytics and task pipeline.

    Attributes:
        significance_threshold: Transitions with intensity above this are
            pushed to the notifier and memory hooks
        decay_rate_per_hour: Fraction of the distance to neutral removed per hour
        mood_history_capacity: Ring buffer size for mood transitions
        action_log_capacity: Ring buffer size for the action log
        retention_ms: Entries older than this are swept
        rapid_fire_window_ms: Window for the rapid-fire check
        rapid_fire_max_actions: More actions than this inside the window is flagged
        identical_window: Number of trailing actions compared for identical parameters
        identical_min_actions: Minimum actions before the identical check applies
        impossible_timing_ms: Gap below which two actions are flagged
        success_rate_min_actions: Minimum actions before the success-rate check applies
        success_rate_max: Success fraction above which a player is flagged
        fairness_interval_s: Seconds between background fairness recomputes
        cleanup_interval_s: Seconds between retention sweeps
        stage_timeout_s: Per-stage timeout for the task pipeline
        snapshot_interval_s: Seconds between automatic snapshots (needs snapshot_dir)
        catalog_path: Optional YAML/JSON trigger catalog replacing the default one
        snapshot_dir: Optional directory for state snapshots
    """
    significance_threshold: int = 50
    decay_rate_per_hour: float = 0.1

    mood_history_capacity: int = 10000
    action_log_capacity: int = 100000
    retention_ms: int = 7 * DAY_MS

    rapid_fire_window_ms: int = 10000
    rapid_fire_max_actions: int = 20
    identical_window: int = 10
    identical_min_actions: int = 10
    impossible_timing_ms: int = 100
    success_rate_min_actions: int = 20
    success_rate_max: float = 0.95

    fairness_interval_s: float = 300.0
    cleanup_interval_s: float = 3600.0
    stage_timeout_s: float = 30.0
    snapshot_interval_s: float = 60.0

    catalog_path: Optional[str] = None
    snapshot_dir: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuntimeConfig":
        """Create from dictionary, ignoring unknown keys."""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    @classmethod
    def load(cls, path: str) -> "RuntimeConfig":
        """Load from a JSON or YAML file, then apply environment overrides."""
        if not os.path.exists(path):
            raise ConfigError(f"Config file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            content = f.read()

        try:
            if path.endswith((".yaml", ".yml")):
                data = yaml.safe_load(content) or {}
            else:
                data = json.loads(content)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigError(f"Failed to parse config {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config {path} must be a mapping")

        return cls.from_dict(data).with_env_overrides()

    def with_env_overrides(self, environ: Optional[Dict[str, str]] = None) -> "RuntimeConfig":
        """
        Return a copy with ``NPC_AFFECT_<FIELD>`` variables applied.

        Values are coerced to the type of the field's default.
        """
        environ = os.environ if environ is None else environ
        data = self.to_dict()
        for f in fields(self):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            current = data[f.name]
            try:
                if isinstance(current, bool):
                    data[f.name] = raw.lower() in ("1", "true", "yes")
                elif isinstance(current, int):
                    data[f.name] = int(raw)
                elif isinstance(current, float):
                    data[f.name] = float(raw)
                else:
                    data[f.name] = raw
            except ValueError as e:
                raise ConfigError(f"Bad value for {ENV_PREFIX}{f.name.upper()}: {raw!r}") from e
        return RuntimeConfig.from_dict(data)


@dataclass
class ArchetypePreset:
    """
    Starting profile for an NPC archetype.

    Attributes:
        name: Archetype key
        base_state: Emotional base profile before personality modifiers
        personality: Personality trait values (0-100) stored with the
            NPC's memory profile and used as emotional modifiers
    """
    name: str
    base_state: EmotionalState
    personality: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "base_state": self.base_state.to_dict(),
            "personality": dict(self.personality),
        }


PRESETS: Dict[str, ArchetypePreset] = {
    "warrior": ArchetypePreset(
        name="warrior",
        base_state=EmotionalState(
            happiness=60, anger=70, fear=20, trust=50,
            excitement=80, sadness=30, disgust=40, surprise=40,
        ),
        personality={"aggressive": 80, "loyal": 70, "honest": 60, "cautious": 30},
    ),
    "merchant": ArchetypePreset(
        name="merchant",
        base_state=EmotionalState(
            happiness=70, anger=30, fear=40, trust=60,
            excitement=60, sadness=20, disgust=30, surprise=50,
        ),
        personality={"greedy": 75, "cunning": 65, "friendly": 70, "honest": 40},
    ),
    "scholar": ArchetypePreset(
        name="scholar",
        base_state=EmotionalState(
            happiness=50, anger=20, fear=30, trust=70,
            excitement=40, sadness=40, disgust=20, surprise=80,
        ),
        personality={"cautious": 80, "honest": 85, "mysterious": 60, "friendly": 50},
    ),
    "trickster": ArchetypePreset(
        name="trickster",
        base_state=EmotionalState(
            happiness=80, anger=50, fear=60, trust=30,
            excitement=90, sadness=20, disgust=70, surprise=70,
        ),
        personality={"cunning": 90, "cheerful": 70, "mysterious": 80, "honest": 20},
    ),
    "guardian": ArchetypePreset(
        name="guardian",
        base_state=EmotionalState(
            happiness=40, anger=40, fear=20, trust=80,
            excitement=30, sadness=50, disgust=30, surprise=30,
        ),
        personality={"loyal": 95, "cautious": 75, "honest": 80, "aggressive": 60},
    ),
    "balanced": ArchetypePreset(
        name="balanced",
        base_state=EmotionalState(),
    ),
}

DEFAULT_ARCHETYPE = "balanced"


def get_preset(name: str) -> ArchetypePreset:
    """Get an archetype preset, falling back to ``balanced``."""
    preset = PRESETS.get((name or "").lower())
    if preset is None:
        logger.debug(f"Unknown archetype {name!r}, using {DEFAULT_ARCHETYPE}")
        return PRESETS[DEFAULT_ARCHETYPE]
    return preset


def list_presets() -> List[str]:
    """List available archetype names."""
    return list(PRESETS.keys())
