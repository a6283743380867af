"""
Tests for retention logs and keyed locks.
"""
import asyncio

from npc_affect.core.locks import KeyedLocks
from npc_affect.core.logbook import RetentionLog


def _log(capacity=3, retention_ms=None):
    return RetentionLog(capacity=capacity, timestamp_of=lambda e: e["ts"], retention_ms=retention_ms, name="test")


class TestRetentionLog:

    def test_capacity_drops_oldest(self):
        log = _log(capacity=3)
        log.extend({"ts": ts} for ts in (1, 2, 3, 4))
        assert [e["ts"] for e in log.snapshot()] == [2, 3, 4]
        stats = log.get_stats()
        assert stats["dropped"] == 1
        assert stats["appended"] == 4

    def test_since_range(self):
        log = _log(capacity=10)
        log.extend({"ts": ts} for ts in (1, 5, 10))
        assert [e["ts"] for e in log.since(5)] == [5, 10]
        assert [e["ts"] for e in log.since(2, 9)] == [5]

    def test_sweep(self):
        log = _log(capacity=10, retention_ms=100)
        log.extend({"ts": ts} for ts in (0, 50, 150))
        assert log.sweep(now_ms=200) == 2
        assert len(log) == 1
        assert log.get_stats()["swept"] == 2

    def test_sweep_without_retention_is_noop(self):
        log = _log()
        log.append({"ts": 0})
        assert log.sweep(now_ms=10**12) == 0
        assert len(log) == 1


class TestKeyedLocks:

    def test_same_key_same_lock(self):
        locks = KeyedLocks()
        assert locks.lock("a") is locks.lock("a")
        assert locks.lock("a") is not locks.lock("b")
        assert len(locks) == 2

    def test_serializes_same_key(self):
        locks = KeyedLocks()
        order = []

        async def worker(name):
            async with locks.lock("npc"):
                order.append(f"{name}:start")
                await asyncio.sleep(0.01)
                order.append(f"{name}:end")

        async def main():
            await asyncio.gather(worker("a"), worker("b"))
            assert not locks.locked("npc")

        asyncio.run(main())
        assert order == ["a:start", "a:end", "b:start", "b:end"]
