"""
Append-only logs feeding the analytics layer.

- ActionLog: executed game actions, indexed by player and by session
- SessionLog: player/NPC sessions and their outcomes
- DialogueLog: dialogue branch selections

Writers append under a lock; readers get copies, so the periodic fairness
and cleanup jobs never hold up task handling.
"""
from __future__ import annotations

import copy
import logging
import threading
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Tuple

from ..core.logbook import RetentionLog
from ..errors import UnknownEntity
from ..types import DialogueBranch, GameAction, GameSession, SessionOutcome
from ..util import new_id, now_ms

logger = logging.getLogger(__name__)


class ActionLog:
    """
    Bounded action log with O(1) amortized lookup by player and session.

    When the log is full the oldest action is evicted, from the indexes too.

    Example:
        >>> log = ActionLog(capacity=1000)
        >>> log.append(action)
        >>> log.for_player(action.player_id)[-1] is action
        True
    """

    def __init__(self, capacity: int = 100000, retention_ms: Optional[int] = None):
        self.capacity = capacity
        self.retention_ms = retention_ms
        self._actions: Deque[GameAction] = deque()
        self._by_player: Dict[str, Deque[GameAction]] = {}
        self._by_session: Dict[str, Deque[GameAction]] = {}
        self._lock = threading.RLock()

    def append(self, action: GameAction) -> None:
        with self._lock:
            if len(self._actions) >= self.capacity:
                self._evict(self._actions.popleft())
            self._actions.append(action)
            self._by_player.setdefault(action.player_id, deque()).append(action)
            self._by_session.setdefault(action.session_id, deque()).append(action)

    def _evict(self, action: GameAction) -> None:
        # Evicted actions are always the oldest in their index entries too.
        for index, key in ((self._by_player, action.player_id), (self._by_session, action.session_id)):
            entries = index.get(key)
            if entries and entries[0] is action:
                entries.popleft()
            if entries is not None and not entries:
                del index[key]

    def for_player(self, player_id: str) -> List[GameAction]:
        """A player's actions, oldest first."""
        with self._lock:
            return list(self._by_player.get(player_id, ()))

    def for_session(self, session_id: str) -> List[GameAction]:
        with self._lock:
            return list(self._by_session.get(session_id, ()))

    def snapshot(self, start_ms: Optional[int] = None, end_ms: Optional[int] = None) -> List[GameAction]:
        """Copy of the actions, optionally limited to ``[start_ms, end_ms]``."""
        with self._lock:
            actions = list(self._actions)
        if start_ms is not None:
            actions = [a for a in actions if a.timestamp >= start_ms]
        if end_ms is not None:
            actions = [a for a in actions if a.timestamp <= end_ms]
        return actions

    def sweep(self, now: int) -> int:
        """Drop actions older than the retention horizon."""
        if self.retention_ms is None:
            return 0
        cutoff = now - self.retention_ms
        removed = 0
        with self._lock:
            while self._actions and self._actions[0].timestamp < cutoff:
                self._evict(self._actions.popleft())
                removed += 1
        if removed:
            logger.info(f"Swept {removed} actions older than {cutoff}")
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._actions)


class SessionLog:
    """Player sessions with NPCs, keyed by session id."""

    def __init__(self, retention_ms: Optional[int] = None, clock: Callable[[], int] = now_ms):
        self.retention_ms = retention_ms
        self._clock = clock
        self._sessions: Dict[str, GameSession] = {}
        self._open: Dict[Tuple[str, str], str] = {}
        self._lock = threading.RLock()

    def start_session(
        self,
        player_id: str,
        npc_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None,
    ) -> GameSession:
        session = GameSession(
            id=session_id or new_id("session"),
            player_id=player_id,
            npc_id=npc_id,
            start_time=self._clock(),
            metadata=dict(metadata or {}),
        )
        with self._lock:
            self._sessions[session.id] = session
            self._open[(player_id, npc_id)] = session.id
        logger.info(f"Started session {session.id} for player {player_id} with NPC {npc_id}")
        return copy.deepcopy(session)

    def end_session(self, session_id: str, outcome: SessionOutcome) -> GameSession:
        """
        Close a session.

        Raises:
            UnknownEntity: No session with this id.
        """
        outcome = SessionOutcome(outcome)
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise UnknownEntity("Session", session_id)
            session.end_time = self._clock()
            session.duration = session.end_time - session.start_time
            session.outcome = outcome
            key = (session.player_id, session.npc_id)
            if self._open.get(key) == session_id:
                del self._open[key]
            ended = copy.deepcopy(session)
        logger.info(
            f"Ended session {session_id} with outcome {outcome.value} (duration: {ended.duration}ms)"
        )
        return ended

    def get(self, session_id: str) -> Optional[GameSession]:
        with self._lock:
            session = self._sessions.get(session_id)
            return copy.deepcopy(session) if session else None

    def has(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def open_session_for(self, player_id: str, npc_id: str) -> Optional[str]:
        """Id of the player's ongoing session with this NPC, if any."""
        with self._lock:
            return self._open.get((player_id, npc_id))

    def attach_action(self, session_id: str, action_id: str) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                session.action_ids.append(action_id)

    def snapshot(self, start_ms: Optional[int] = None, end_ms: Optional[int] = None) -> List[GameSession]:
        """Copies of the sessions, optionally limited by start time."""
        with self._lock:
            sessions = copy.deepcopy(list(self._sessions.values()))
        if start_ms is not None:
            sessions = [s for s in sessions if s.start_time >= start_ms]
        if end_ms is not None:
            sessions = [s for s in sessions if s.start_time <= end_ms]
        return sessions

    def sweep(self, now: int) -> int:
        """Drop sessions that started before the retention horizon."""
        if self.retention_ms is None:
            return 0
        cutoff = now - self.retention_ms
        with self._lock:
            stale = [sid for sid, s in self._sessions.items() if s.start_time < cutoff]
            for sid in stale:
                session = self._sessions.pop(sid)
                key = (session.player_id, session.npc_id)
                if self._open.get(key) == sid:
                    del self._open[key]
        if stale:
            logger.info(f"Swept {len(stale)} sessions started before {cutoff}")
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


class DialogueLog:
    """Dialogue branch selections, backed by a retention log."""

    def __init__(self, capacity: int = 100000, retention_ms: Optional[int] = None, clock: Callable[[], int] = now_ms):
        self._clock = clock
        self._log: RetentionLog[DialogueBranch] = RetentionLog(
            capacity=capacity,
            timestamp_of=lambda b: b.timestamp,
            retention_ms=retention_ms,
            name="dialogue_branches",
        )

    def record(
        self,
        session_id: str,
        npc_id: str,
        player_id: str,
        branch_path: Sequence[str],
        choices: Sequence[str],
        selected_choice: str,
        emotional_context: Optional[Dict[str, Any]] = None,
    ) -> DialogueBranch:
        branch = DialogueBranch(
            id=new_id("dialogue"),
            session_id=session_id,
            npc_id=npc_id,
            player_id=player_id,
            branch_path=tuple(branch_path),
            choices=tuple(choices),
            selected_choice=selected_choice,
            timestamp=self._clock(),
            emotional_context=dict(emotional_context or {}),
        )
        self._log.append(branch)
        logger.debug(f"Recorded dialogue branch selection: {selected_choice}")
        return branch

    def snapshot(self, start_ms: Optional[int] = None, end_ms: Optional[int] = None) -> List[DialogueBranch]:
        if start_ms is None and end_ms is None:
            return self._log.snapshot()
        return self._log.since(start_ms or 0, end_ms)

    def sweep(self, now: int) -> int:
        return self._log.sweep(now)

    def __len__(self) -> int:
        return len(self._log)
