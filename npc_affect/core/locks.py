"""
Per-key asyncio locks.

Work on the same key (an NPC id) is serialized; work on different keys
runs concurrently.
"""
from __future__ import annotations

import asyncio
from typing import Dict


class KeyedLocks:
    """
    Lazily created ``asyncio.Lock`` per key.

    Example:
        >>> locks = KeyedLocks()
        >>> async def update(npc_id):
        ...     async with locks.lock(npc_id):
        ...         ...
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock(self, key: str) -> asyncio.Lock:
        # No await between lookup and insert, so this is atomic on the loop.
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
