"""
Tests for operational plumbing: metrics, structured logging, background jobs.
"""
import asyncio
import json
import logging

import pytest

from npc_affect.logging_config import JSONFormatter, StructuredLogger, configure_logging, get_logger
from npc_affect.metrics import LatencyStats, MetricsCollector
from npc_affect.scheduler import PeriodicJob, safe_create_task


class TestMetrics:

    def test_latency_stats(self):
        stats = LatencyStats()
        for ms in (10, 20, 30, 40):
            stats.record(ms)
        assert stats.avg_ms == 25
        assert stats.percentile(50) == 30
        assert stats.to_dict()["min_ms"] == 10
        assert LatencyStats().to_dict()["min_ms"] == 0

    def test_counters_and_errors(self):
        metrics = MetricsCollector()
        metrics.increment("tasks.completed")
        metrics.increment("processed", 2, subsystem="interactions")
        metrics.record_error("memory", "add_memory")
        metrics.record_error("memory", "add_memory")
        metrics.record_detection("rapid_fire_actions")

        assert metrics.get_counter("tasks.completed") == 1
        assert metrics.get_counter("interactions.processed") == 2
        assert metrics.get_counter("missing") == 0
        assert metrics.get_error_count("memory.add_memory") == 2
        assert metrics.get_total_errors() == 2

        summary = metrics.summary()
        assert summary["totals"] == {"errors": 2, "detections": 1}

        metrics.reset()
        assert metrics.summary()["counters"] == {}

    def test_time_operation(self):
        metrics = MetricsCollector()
        with metrics.time_operation("stage.plan") as timer:
            pass
        assert timer.elapsed_ms >= 0
        assert metrics.get_latency_stats("stage.plan").count == 1


class TestStructuredLogging:

    def test_get_logger_returns_structured_logger(self):
        slog = get_logger("npc_affect.test_structured")
        assert isinstance(slog, StructuredLogger)
        assert get_logger("npc_affect.test_structured") is slog
        assert not isinstance(logging.getLogger("npc_affect.test_plain"), StructuredLogger)

    def test_json_formatter_includes_fields(self):
        slog = get_logger("npc_affect.test_json")
        records = []

        class Capture(logging.Handler):
            def emit(self, record):
                records.append(record)

        handler = Capture()
        slog.addHandler(handler)
        slog.setLevel(logging.INFO)
        try:
            slog.event("exploit_detected", "flagged", subsystem="analytics", npc_id="npc_1", pattern="x")
        finally:
            slog.removeHandler(handler)

        data = json.loads(JSONFormatter().format(records[0]))
        assert data["event"] == "exploit_detected"
        assert data["subsystem"] == "analytics"
        assert data["npc_id"] == "npc_1"
        assert data["pattern"] == "x"
        assert "task_id" not in data

    def test_configure_logging_writes_files(self, tmp_path):
        root = logging.getLogger()
        saved = (root.handlers[:], root.level)
        try:
            configure_logging(level="INFO", log_dir=str(tmp_path))
            get_logger("npc_affect.test_files").event("startup", "hello")
            for h in root.handlers:
                h.flush()
            assert (tmp_path / "npc_affect.log").exists()
            line = (tmp_path / "npc_affect.json.log").read_text().strip().splitlines()[-1]
            assert json.loads(line)["message"] == "hello"
        finally:
            for h in root.handlers:
                if h not in saved[0]:
                    h.close()
            root.handlers, root.level = saved


class TestScheduler:

    def test_periodic_job_runs_and_survives_failures(self):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first run fails")

        job = PeriodicJob("flaky", 0.01, flaky)

        async def main():
            job.start()
            await asyncio.sleep(0.08)
            await job.stop()

        asyncio.run(main())
        assert job.failures == 1
        assert job.runs >= 1
        assert not job.running

    def test_run_once_awaits_coroutines(self):
        done = []

        async def work():
            done.append(True)

        job = PeriodicJob("async", 60, work)
        asyncio.run(job.run_once())
        assert done == [True]
        assert job.runs == 1

    def test_safe_create_task_logs_failure(self, caplog):
        async def boom():
            raise ValueError("bad")

        async def main():
            task = safe_create_task(boom(), name="boom")
            with pytest.raises(ValueError):
                await task

        with caplog.at_level(logging.ERROR, logger="npc_affect.scheduler"):
            asyncio.run(main())
        assert "Background task 'boom' failed" in caplog.text
