"""
Declarative emotion triggers.

A trigger maps an event name plus a context match to per-dimension emotion
deltas and a reputation impact. Conditions form a small closed set
(Equals, GreaterThan, LessThan) evaluated by one dispatch function.

Catalog files (YAML or JSON) use the same shape as ``DEFAULT_TRIGGERS``::

    - event: gift_received
      conditions:
        value: {op: ">", value: 0}
        action: give_item          # plain value means equality
      emotion_deltas: {happiness: 20, trust: 15}
      reputation_impact: 30
      description: Player gave a gift to the NPC
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import yaml

from .errors import ConfigError
from .types import EMOTION_DIMENSIONS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Equals:
    value: Any


@dataclass(frozen=True)
class GreaterThan:
    value: Any


@dataclass(frozen=True)
class LessThan:
    value: Any


Condition = Union[Equals, GreaterThan, LessThan]

_MISSING = object()


def _strict_equals(actual: Any, expected: Any) -> bool:
    # True == 1 in Python; a boolean condition only matches a boolean value.
    if isinstance(actual, bool) or isinstance(expected, bool):
        return isinstance(actual, bool) and isinstance(expected, bool) and actual is expected
    return actual == expected


def _greater_than(actual: Any, expected: Any) -> bool:
    try:
        return actual > expected
    except TypeError:
        return False


def _less_than(actual: Any, expected: Any) -> bool:
    try:
        return actual < expected
    except TypeError:
        return False


_EVALUATORS: Dict[type, Callable[[Any, Any], bool]] = {
    Equals: _strict_equals,
    GreaterThan: _greater_than,
    LessThan: _less_than,
}

_OPERATORS: Dict[str, type] = {
    "=": Equals,
    "==": Equals,
    ">": GreaterThan,
    "<": LessThan,
    "$eq": Equals,
    "$gt": GreaterThan,
    "$lt": LessThan,
}


def evaluate(condition: Condition, actual: Any = _MISSING) -> bool:
    """Evaluate one condition against a context value. Missing values never match."""
    if actual is _MISSING or actual is None:
        return False
    return _EVALUATORS[type(condition)](actual, condition.value)


def parse_condition(raw: Any) -> List[Condition]:
    """
    Parse one declarative condition value.

    - ``{"op": ">", "value": 0}`` is a comparison
    - ``{"$gt": 0, "$lt": 10}`` (legacy form) yields one condition per operator
    - anything else is a plain equality
    """
    if isinstance(raw, (Equals, GreaterThan, LessThan)):
        return [raw]
    if isinstance(raw, Mapping):
        if "op" in raw:
            op = raw["op"]
            if op not in _OPERATORS or "value" not in raw:
                raise ConfigError(f"Invalid condition {raw!r}")
            return [_OPERATORS[op](raw["value"])]
        if raw and all(k in _OPERATORS for k in raw):
            return [_OPERATORS[k](v) for k, v in raw.items()]
    return [Equals(raw)]


@dataclass(frozen=True)
class EmotionTrigger:
    """
    Immutable rule in the trigger catalog.

    Attributes:
        event: Action name this trigger responds to
        conditions: (context key, condition) pairs, all of which must hold
        emotion_deltas: Partial per-dimension deltas
        reputation_impact: Signed reputation change for the acting player
        description: Human-readable summary, also stored on the transition
    """
    event: str
    conditions: Tuple[Tuple[str, Condition], ...] = ()
    emotion_deltas: Tuple[Tuple[str, int], ...] = ()
    reputation_impact: int = 0
    description: str = ""

    @property
    def deltas(self) -> Dict[str, int]:
        return dict(self.emotion_deltas)

    def matches(self, context: Mapping[str, Any]) -> bool:
        for key, condition in self.conditions:
            if not evaluate(condition, context.get(key, _MISSING)):
                return False
        return True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EmotionTrigger":
        if "event" not in data:
            raise ConfigError(f"Trigger without event: {data!r}")

        conditions: List[Tuple[str, Condition]] = []
        for key, raw in (data.get("conditions") or {}).items():
            conditions.extend((key, c) for c in parse_condition(raw))

        deltas = data.get("emotion_deltas") or {}
        unknown = set(deltas) - set(EMOTION_DIMENSIONS)
        if unknown:
            raise ConfigError(f"Trigger {data['event']} has unknown dimensions: {sorted(unknown)}")

        return cls(
            event=data["event"],
            conditions=tuple(conditions),
            emotion_deltas=tuple((k, int(v)) for k, v in deltas.items()),
            reputation_impact=int(data.get("reputation_impact", 0)),
            description=data.get("description", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        conditions: Dict[str, Any] = {}
        symbols = {Equals: "=", GreaterThan: ">", LessThan: "<"}
        for key, c in self.conditions:
            conditions[key] = {"op": symbols[type(c)], "value": c.value}
        return {
            "event": self.event,
            "conditions": conditions,
            "emotion_deltas": self.deltas,
            "reputation_impact": self.reputation_impact,
            "description": self.description,
        }


DEFAULT_TRIGGERS: List[Dict[str, Any]] = [
    # Positive interactions
    {
        "event": "player_helped",
        "conditions": {"success": True},
        "emotion_deltas": {"happiness": 15, "trust": 10, "sadness": -5},
        "reputation_impact": 25,
        "description": "Player helped the NPC successfully",
    },
    {
        "event": "gift_received",
        "conditions": {"value": {"op": ">", "value": 0}},
        "emotion_deltas": {"happiness": 20, "trust": 15, "excitement": 10},
        "reputation_impact": 30,
        "description": "Player gave a gift to the NPC",
    },
    {
        "event": "quest_completed",
        "conditions": {"success": True},
        "emotion_deltas": {"happiness": 25, "trust": 20, "excitement": 15},
        "reputation_impact": 50,
        "description": "Player completed a quest for the NPC",
    },
    {
        "event": "trade_completed",
        "conditions": {"success": True},
        "emotion_deltas": {"happiness": 10, "trust": 10},
        "reputation_impact": 15,
        "description": "Player traded fairly with the NPC",
    },
    {
        "event": "trade_completed",
        "conditions": {"success": True, "value": {"op": ">", "value": 100}},
        "emotion_deltas": {"happiness": 15, "trust": 15, "excitement": 10},
        "reputation_impact": 25,
        "description": "Player closed a lucrative trade with the NPC",
    },
    {
        "event": "npc_won_duel",
        "emotion_deltas": {"happiness": 15, "excitement": 15, "fear": -5},
        "reputation_impact": 5,
        "description": "NPC won a duel against the player",
    },
    {
        "event": "player_won_duel",
        "emotion_deltas": {"anger": 10, "surprise": 15, "trust": 5, "excitement": 10},
        "reputation_impact": 20,
        "description": "Player won a fair duel against the NPC",
    },
    {
        "event": "positive_interaction",
        "emotion_deltas": {"happiness": 5, "trust": 3},
        "reputation_impact": 5,
        "description": "Player had a pleasant exchange with the NPC",
    },

    # Negative interactions
    {
        "event": "player_attacked",
        "conditions": {"target": "npc"},
        "emotion_deltas": {"anger": 30, "fear": 20, "trust": -25, "happiness": -15},
        "reputation_impact": -75,
        "description": "Player attacked the NPC",
    },
    {
        "event": "promise_broken",
        "emotion_deltas": {"anger": 20, "sadness": 15, "trust": -30, "disgust": 10},
        "reputation_impact": -50,
        "description": "Player broke a promise to the NPC",
    },
    {
        "event": "theft_detected",
        "conditions": {"success": True},
        "emotion_deltas": {"anger": 25, "disgust": 20, "trust": -35, "fear": 10},
        "reputation_impact": -60,
        "description": "Player stole from the NPC",
    },
    {
        "event": "quest_failed",
        "emotion_deltas": {"happiness": -10, "sadness": 10, "trust": -5},
        "reputation_impact": -15,
        "description": "Player failed a quest for the NPC",
    },
    {
        "event": "trade_failed",
        "emotion_deltas": {"trust": -10, "sadness": 5},
        "reputation_impact": -10,
        "description": "A trade with the NPC fell through",
    },
    {
        "event": "duel_failed",
        "emotion_deltas": {"anger": 5, "surprise": 10},
        "reputation_impact": -5,
        "description": "A duel with the NPC could not be settled",
    },
    {
        "event": "negative_interaction",
        "emotion_deltas": {"anger": 5, "trust": -3},
        "reputation_impact": -5,
        "description": "Player had an unpleasant exchange with the NPC",
    },

    # Neutral/contextual interactions
    {
        "event": "repeated_interaction",
        "conditions": {"interaction_count": {"op": ">", "value": 10}},
        "emotion_deltas": {"trust": 5, "happiness": 3},
        "reputation_impact": 10,
        "description": "Player has interacted many times",
    },
    {
        "event": "long_absence",
        "conditions": {"days_since_last_interaction": {"op": ">", "value": 7}},
        "emotion_deltas": {"sadness": 10, "trust": -5},
        "reputation_impact": -5,
        "description": "Player has been absent for a long time",
    },
]


class TriggerCatalog:
    """
    Read-only, ordered collection of emotion triggers.

    Example:
        >>> catalog = TriggerCatalog.default()
        >>> trigger = catalog.select("gift_received", {"value": 10})
        >>> trigger.reputation_impact
        30
    """

    def __init__(self, triggers: Iterable[EmotionTrigger]):
        self._triggers: Tuple[EmotionTrigger, ...] = tuple(triggers)
        self._by_event: Dict[str, List[EmotionTrigger]] = {}
        for trigger in self._triggers:
            self._by_event.setdefault(trigger.event, []).append(trigger)

    def __len__(self) -> int:
        return len(self._triggers)

    def __iter__(self):
        return iter(self._triggers)

    @property
    def events(self) -> List[str]:
        return list(self._by_event.keys())

    def match(self, event: str, context: Mapping[str, Any]) -> List[EmotionTrigger]:
        """All triggers for ``event`` whose conditions hold, in catalog order."""
        return [t for t in self._by_event.get(event, ()) if t.matches(context)]

    def select(self, event: str, context: Mapping[str, Any]) -> Optional[EmotionTrigger]:
        """
        The one trigger to apply for ``event``.

        Largest absolute reputation impact wins; on ties the trigger that
        appears first in the catalog wins.
        """
        best: Optional[EmotionTrigger] = None
        for trigger in self.match(event, context):
            if best is None or abs(trigger.reputation_impact) > abs(best.reputation_impact):
                best = trigger
        return best

    def to_list(self) -> List[Dict[str, Any]]:
        return [t.to_dict() for t in self._triggers]

    @classmethod
    def from_list(cls, items: Iterable[Mapping[str, Any]]) -> "TriggerCatalog":
        return cls(EmotionTrigger.from_dict(item) for item in items)

    @classmethod
    def default(cls) -> "TriggerCatalog":
        return cls.from_list(DEFAULT_TRIGGERS)

    @classmethod
    def load(cls, path: str) -> "TriggerCatalog":
        """Load a catalog from a YAML or JSON file (a list, or ``{triggers: [...]}``)."""
        if not os.path.exists(path):
            raise ConfigError(f"Trigger catalog not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            content = f.read()

        try:
            if path.endswith((".yaml", ".yml")):
                data = yaml.safe_load(content)
            else:
                data = json.loads(content)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigError(f"Failed to parse trigger catalog {path}: {e}") from e

        if isinstance(data, Mapping):
            data = data.get("triggers")
        if not isinstance(data, list):
            raise ConfigError(f"Trigger catalog {path} must contain a list of triggers")

        catalog = cls.from_list(data)
        logger.info(f"Loaded {len(catalog)} emotion triggers from {path}")
        return catalog
