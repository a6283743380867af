"""
Player reputation tracking.

Each player has a global score, a score with every NPC they have dealt
with, and five derived traits. Reputation changes come only from applied
emotion triggers, so every update is paired with a mood transition.
"""
from __future__ import annotations

import copy
import os
import json
import logging
import threading
from typing import Dict, List, Optional

from .errors import PersistenceFailure
from .metrics import MetricsCollector
from .types import (
    GLOBAL_SCORE_RANGE,
    NPC_SCORE_RANGE,
    PlayerReputation,
    ReputationTraits,
)
from .util import clamp, now_ms

logger = logging.getLogger(__name__)


def apply_impact(reputation: PlayerReputation, npc_id: str, impact: int, timestamp: Optional[int] = None) -> None:
    """
    Apply a signed reputation impact in place.

    Trait delta is |impact| / 10. A positive impact raises trustworthiness
    and respect by the delta and reliability by half of it; a negative one
    raises aggression and lowers trustworthiness and respect.
    """
    reputation.global_score = int(clamp(reputation.global_score + impact, *GLOBAL_SCORE_RANGE))
    reputation.npc_scores[npc_id] = int(clamp(reputation.npc_score(npc_id) + impact, *NPC_SCORE_RANGE))

    traits = reputation.traits
    trait_delta = abs(impact) / 10
    if impact > 0:
        traits.trustworthiness += trait_delta
        traits.respect += trait_delta
        traits.reliability += trait_delta / 2
    elif impact < 0:
        traits.aggression += trait_delta
        traits.trustworthiness -= trait_delta
        traits.respect -= trait_delta
    reputation.traits = traits.clamped()

    reputation.interactions += 1
    reputation.last_updated = timestamp if timestamp is not None else now_ms()


class ReputationStore:
    """
    Thread-safe map of player address to reputation.

    Records are created lazily on first impact. When ``path`` is given the
    store loads from it on start and saves after each mutation. A failed
    save is logged and counted; the in-memory update still stands.

    Example:
        >>> store = ReputationStore()
        >>> rep = store.apply("0xabc", "merchant_1", 30)
        >>> rep.global_score, rep.npc_score("merchant_1")
        (30, 30)
    """

    def __init__(self, path: Optional[str] = None, metrics: Optional[MetricsCollector] = None):
        """
        Args:
            path: Optional JSON file for persistence
            metrics: Collector for save failures
        """
        self.path = path
        self.metrics = metrics or MetricsCollector()
        self.save_failures = 0
        self._reputations: Dict[str, PlayerReputation] = {}
        self._lock = threading.RLock()
        if path:
            self._load()

    def _load(self) -> None:
        """Load from disk."""
        if not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            for address, rep_data in data.items():
                self._reputations[address] = PlayerReputation.from_dict(rep_data)
            logger.info(f"Loaded {len(self._reputations)} player reputations from {self.path}")
        except (OSError, ValueError, KeyError) as e:
            logger.warning(f"Failed to load reputations: {e}")

    def _save(self) -> None:
        """Persist to disk."""
        if not self.path:
            return
        data = {address: r.to_dict() for address, r in self._reputations.items()}
        try:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            failure = PersistenceFailure(f"Failed to save reputations to {self.path}: {e}")
            self.save_failures += 1
            self.metrics.record_error("reputation", "save")
            logger.warning(str(failure))

    def apply(self, player_id: str, npc_id: str, impact: int) -> PlayerReputation:
        """Apply an impact, creating the record if needed. Returns a copy."""
        with self._lock:
            reputation = self._reputations.get(player_id)
            if reputation is None:
                reputation = PlayerReputation(address=player_id, traits=ReputationTraits())
                self._reputations[player_id] = reputation
            apply_impact(reputation, npc_id, impact)
            self._save()
            return copy.deepcopy(reputation)

    def get(self, player_id: str) -> Optional[PlayerReputation]:
        with self._lock:
            reputation = self._reputations.get(player_id)
            return copy.deepcopy(reputation) if reputation is not None else None

    def npc_score(self, player_id: str, npc_id: str) -> int:
        """Player's score with one NPC, 0 when unknown."""
        with self._lock:
            reputation = self._reputations.get(player_id)
            return reputation.npc_score(npc_id) if reputation is not None else 0

    def all(self) -> List[PlayerReputation]:
        with self._lock:
            return copy.deepcopy(list(self._reputations.values()))

    def load_records(self, records: List[PlayerReputation]) -> None:
        """Replace all records (used when restoring a snapshot)."""
        with self._lock:
            self._reputations = {r.address: copy.deepcopy(r) for r in records}
            self._save()

    def __len__(self) -> int:
        with self._lock:
            return len(self._reputations)
