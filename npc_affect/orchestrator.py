"""
Task orchestrator: the per-request pipeline.

Each task moves strictly through

    RECEIVED -> PERCEIVED -> PLANNED -> EXECUTED -> VALIDATED -> RECORDED -> COMPLETED

or drops to FAILED from any collaborator stage. Every collaborator call is
bounded by the stage timeout. A failed task still gets a best-effort
failure memory write before its UpstreamFailure propagates, and an
executed task is written to the action log exactly once either way.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .analytics import AnalyticsEngine, AnalyticsReport
from .collaborators import (
    NULL_ADDRESS,
    ActionExecutor,
    EchoExecutor,
    EchoPerception,
    EchoPlanner,
    InMemoryMemoryStore,
    LoggingNotifier,
    MemoryStore,
    MemoryType,
    Notifier,
    PassThroughReferee,
    Perception,
    Planner,
    Referee,
)
from .config import RuntimeConfig, get_preset
from .emotion_engine import EmotionalInfluence, EmotionEngine, InteractionResult
from .errors import PersistenceFailure, StageTimeout, UnknownEntity, UpstreamFailure
from .logging_config import get_logger
from .metrics import MetricsCollector
from .persistence import SnapshotStore
from .scheduler import PeriodicJob
from .types import (
    EmotionalState,
    ExploitDetection,
    FairnessMetric,
    GameAction,
    MoodTransition,
    PlayerReputation,
)
from .util import new_id, now_ms

logger = logging.getLogger(__name__)
slog = get_logger("npc_affect.tasks")

SNAPSHOT_NAME = "runtime"
MAX_TRACKED_TASKS = 1000

# Emotional weight of a task memory by task type
TASK_MEMORY_WEIGHTS = {"duel": 80, "quest": 60}
DEFAULT_MEMORY_WEIGHT = 40


class TaskStage(str, Enum):
    RECEIVED = "received"
    PERCEIVED = "perceived"
    PLANNED = "planned"
    EXECUTED = "executed"
    VALIDATED = "validated"
    RECORDED = "recorded"
    COMPLETED = "completed"
    FAILED = "failed"


STAGE_ORDER: Tuple[TaskStage, ...] = (
    TaskStage.RECEIVED,
    TaskStage.PERCEIVED,
    TaskStage.PLANNED,
    TaskStage.EXECUTED,
    TaskStage.VALIDATED,
    TaskStage.RECORDED,
    TaskStage.COMPLETED,
)


@dataclass
class Task:
    """
    One unit of NPC work.

    The acting player is ``player_address`` or, when absent, the
    ``opponent`` or ``player`` task parameter.
    """
    type: str
    npc_id: str
    params: Dict[str, Any] = field(default_factory=dict)
    player_address: Optional[str] = None
    session_id: Optional[str] = None
    id: str = field(default_factory=lambda: new_id("task"))

    @property
    def player(self) -> Optional[str]:
        return self.player_address or self.params.get("opponent") or self.params.get("player")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Task":
        kwargs = {k: v for k, v in data.items() if k in cls.__dataclass_fields__ and v is not None}
        kwargs["npc_id"] = str(kwargs["npc_id"])
        return cls(**kwargs)


@dataclass
class TaskRecord:
    """Progress of one task through the stage machine."""
    task_id: str
    npc_id: str
    task_type: str
    stage: TaskStage = TaskStage.RECEIVED
    history: List[Tuple[str, int]] = field(default_factory=list)
    error: Optional[str] = None

    def __post_init__(self):
        if not self.history:
            self.history.append((self.stage.value, now_ms()))

    def advance(self, stage: TaskStage) -> None:
        expected = STAGE_ORDER[STAGE_ORDER.index(self.stage) + 1] if self.stage in STAGE_ORDER[:-1] else None
        if stage != TaskStage.FAILED and stage != expected:
            raise RuntimeError(f"Task {self.task_id}: illegal transition {self.stage.value} -> {stage.value}")
        self.stage = stage
        self.history.append((stage.value, now_ms()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "npc_id": self.npc_id,
            "task_type": self.task_type,
            "stage": self.stage.value,
            "history": [{"stage": s, "timestamp": ts} for s, ts in self.history],
            "error": self.error,
        }


@dataclass
class FinalResult:
    """What ``handle_task`` returns for a completed task."""
    task_id: str
    success: bool
    result: Dict[str, Any]
    stage: TaskStage = TaskStage.COMPLETED
    emotion: Optional[InteractionResult] = None
    emotion_error: Optional[str] = None
    action_id: Optional[str] = None
    exploits: List[ExploitDetection] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "success": self.success,
            "result": self.result,
            "stage": self.stage.value,
            "emotion": self.emotion.to_dict() if self.emotion else None,
            "emotion_error": self.emotion_error,
            "action_id": self.action_id,
            "exploits": [e.to_dict() for e in self.exploits],
        }


def map_task_to_trigger(
    task: Task,
    player: str,
    final: Mapping[str, Any],
) -> Tuple[str, Dict[str, Any]]:
    """Trigger event name and context for a finished task."""
    success = final.get("success") is not False
    context: Dict[str, Any] = {"task_type": task.type, "success": success}

    if task.type == "duel":
        if success:
            action = "player_won_duel" if final.get("winner") == player else "npc_won_duel"
        else:
            action = "duel_failed"
        context["wager"] = task.params.get("wager")
    elif task.type == "quest":
        action = "quest_completed" if success else "quest_failed"
        context["reward"] = task.params.get("reward")
    elif task.type == "trade":
        action = "trade_completed" if success else "trade_failed"
        context["value"] = task.params.get("value")
    else:
        action = "positive_interaction" if success else "negative_interaction"

    return action, context


class TaskOrchestrator:
    """
    Runs tasks against the collaborators and feeds the emotion and
    analytics engines.

    Collaborators default to the in-process echo implementations (mock
    mode).

    Example:
        >>> orchestrator = TaskOrchestrator()
        >>> await orchestrator.initialize_npc("npc_1", "merchant", "Sells potions", ["hums"])
        >>> result = await orchestrator.handle_task(
        ...     {"type": "trade", "npc_id": "npc_1", "params": {"value": 150}, "player_address": "0xabc"})
        >>> result.emotion.transition.trigger
        'trade_completed'
    """

    def __init__(
        self,
        perception: Optional[Perception] = None,
        planner: Optional[Planner] = None,
        executor: Optional[ActionExecutor] = None,
        referee: Optional[Referee] = None,
        memory: Optional[MemoryStore] = None,
        notifier: Optional[Notifier] = None,
        config: Optional[RuntimeConfig] = None,
        emotion: Optional[EmotionEngine] = None,
        analytics: Optional[AnalyticsEngine] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.config = config or RuntimeConfig()
        self.metrics = metrics or MetricsCollector()
        self.perception = perception or EchoPerception()
        self.planner = planner or EchoPlanner()
        self.executor = executor or EchoExecutor()
        self.referee = referee or PassThroughReferee()
        self.memory = memory or InMemoryMemoryStore()
        self.notifier = notifier or LoggingNotifier()
        self.emotion = emotion or EmotionEngine(
            config=self.config,
            notifier=self.notifier,
            memory=self.memory,
            metrics=self.metrics,
            clock=clock,
        )
        self.analytics = analytics or AnalyticsEngine(config=self.config, metrics=self.metrics, clock=clock)
        self.snapshots = SnapshotStore(self.config.snapshot_dir) if self.config.snapshot_dir else None

        self._tasks: "OrderedDict[str, TaskRecord]" = OrderedDict()
        self._jobs: List[PeriodicJob] = [
            PeriodicJob("fairness", self.config.fairness_interval_s, self.analytics.calculate_fairness_metrics),
            PeriodicJob("cleanup", self.config.cleanup_interval_s, self.cleanup),
        ]
        if self.snapshots is not None:
            self._jobs.append(PeriodicJob("snapshot", self.config.snapshot_interval_s, self.save_snapshot))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic background jobs. Needs a running event loop."""
        if self.snapshots is not None:
            self.restore_snapshot()
        for job in self._jobs:
            job.start()

    async def stop(self) -> None:
        for job in self._jobs:
            await job.stop()
        if self.snapshots is not None:
            self.save_snapshot()

    @property
    def jobs(self) -> List[PeriodicJob]:
        return list(self._jobs)

    # ------------------------------------------------------------------
    # NPC setup
    # ------------------------------------------------------------------

    async def initialize_npc(
        self,
        npc_id: str,
        archetype: str = "balanced",
        backstory: str = "",
        quirks: Sequence[str] = (),
    ) -> EmotionalState:
        """Archetype traits -> personality memory -> emotional state."""
        preset = get_preset(archetype)
        try:
            await self._bounded(
                self.memory.initialize_personality(npc_id, dict(preset.personality), backstory, list(quirks))
            )
        except Exception as e:
            self._persistence_failed("initialize_personality", npc_id, e)

        state = self.emotion.initialize_npc_emotion(npc_id, preset.name, preset.personality)
        logger.info(f"Initialized NPC {npc_id} as {preset.name}")
        return state

    # ------------------------------------------------------------------
    # Task pipeline
    # ------------------------------------------------------------------

    async def handle_task(self, task: Any) -> FinalResult:
        """
        Run one task through the pipeline.

        Raises:
            UpstreamFailure: A collaborator failed or timed out (StageTimeout).
        """
        task = task if isinstance(task, Task) else Task.from_dict(task)
        record = self._track(task)
        started = time.perf_counter()
        execution_result: Optional[Dict[str, Any]] = None
        executed = False

        slog.event(
            "task_received",
            f"Handling {task.type} task",
            subsystem="orchestrator",
            task_id=task.id,
            npc_id=task.npc_id,
            player_id=task.player,
        )

        try:
            observation = await self._stage(record, TaskStage.PERCEIVED, "perceive", self.perception.observe)
            context = await self._planning_context(task)
            plan = await self._stage(
                record, TaskStage.PLANNED, "plan",
                self.planner.plan, observation, task.type, json.dumps(context, default=str),
            )
            execution_result = await self._stage(record, TaskStage.EXECUTED, "execute", self.executor.execute, plan)
            executed = True
            final = await self._stage(record, TaskStage.VALIDATED, "validate", self.referee.validate, execution_result)
            if not isinstance(final, Mapping):
                raise UpstreamFailure("validate", message=f"referee returned {type(final).__name__}")
            final = dict(final)
        except UpstreamFailure as e:
            record.advance(TaskStage.FAILED)
            record.error = str(e)
            self.metrics.increment("tasks.failed")
            self.metrics.record_error("orchestrator", e.stage)
            slog.event(
                "task_failed",
                f"Task failed: {e}",
                level=logging.ERROR,
                subsystem="orchestrator",
                task_id=task.id,
                npc_id=task.npc_id,
                stage=e.stage,
            )
            await self._store_task_memory(task, execution_result, {"success": False, "error": str(e)})
            if executed:
                self._log_action(task, execution_result or {}, False, started)
            raise

        await self._store_task_memory(task, execution_result, final)
        emotion, emotion_error = await self._process_emotion(task, final)
        action, exploits = self._log_action(task, final, final.get("success") is not False, started)
        record.advance(TaskStage.RECORDED)
        record.advance(TaskStage.COMPLETED)

        elapsed_ms = (time.perf_counter() - started) * 1000
        self.metrics.record_latency("task.total", elapsed_ms)
        self.metrics.increment("tasks.completed")
        slog.latency("task", elapsed_ms, subsystem="orchestrator", task_id=task.id, npc_id=task.npc_id)

        return FinalResult(
            task_id=task.id,
            success=final.get("success") is not False,
            result=final,
            emotion=emotion,
            emotion_error=emotion_error,
            action_id=action.id if action else None,
            exploits=exploits,
        )

    def _track(self, task: Task) -> TaskRecord:
        record = TaskRecord(task_id=task.id, npc_id=task.npc_id, task_type=task.type)
        self._tasks[task.id] = record
        while len(self._tasks) > MAX_TRACKED_TASKS:
            self._tasks.popitem(last=False)
        return record

    async def _bounded(self, awaitable: Awaitable[Any]) -> Any:
        return await asyncio.wait_for(awaitable, timeout=self.config.stage_timeout_s)

    async def _stage(
        self,
        record: TaskRecord,
        stage: TaskStage,
        name: str,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> Any:
        """Run one collaborator call under the stage timeout and advance the record."""
        with self.metrics.time_operation(f"stage.{name}") as timer:
            try:
                result = await self._bounded(func(*args))
            except asyncio.TimeoutError as e:
                raise StageTimeout(name, self.config.stage_timeout_s) from e
            except UpstreamFailure:
                raise
            except Exception as e:
                raise UpstreamFailure(name, cause=e) from e

        record.advance(stage)
        slog.latency(
            name, timer.elapsed_ms,
            subsystem="orchestrator", task_id=record.task_id, npc_id=record.npc_id, stage=stage.value,
        )
        return result

    async def _planning_context(self, task: Task) -> Dict[str, Any]:
        """Emotional state, influence and summary plus the NPC's personality text."""
        situation = f"Task: {task.type} with params: {json.dumps(task.params, default=str)}"
        try:
            personality = await self._bounded(self.memory.generate_personality_context(task.npc_id, situation))
        except Exception as e:
            self._persistence_failed("generate_personality_context", task.npc_id, e)
            personality = ""

        state = self.emotion.get_emotional_state(task.npc_id)
        return {
            "personality_context": personality,
            "emotional_state": state.to_dict() if state else None,
            "emotional_influence": self.emotion.get_influence(task.npc_id).to_dict() if state else None,
            "emotional_summary": self.emotion.get_emotional_summary(task.npc_id) if state else "balanced",
            "task_params": task.params,
        }

    async def _store_task_memory(
        self,
        task: Task,
        execution_result: Optional[Dict[str, Any]],
        final: Mapping[str, Any],
    ) -> None:
        """Best-effort task memory write. Never raises."""
        is_positive = final.get("success") is not False
        related = task.params.get("opponent") or task.params.get("creator") or task.player or NULL_ADDRESS
        content = {
            "task_type": task.type,
            "task_params": task.params,
            "execution_result": execution_result,
            "final_result": dict(final),
            "timestamp": now_ms(),
        }
        try:
            await self._bounded(self.memory.add_memory(
                task.npc_id,
                related,
                MemoryType.INTERACTION,
                content,
                TASK_MEMORY_WEIGHTS.get(task.type, DEFAULT_MEMORY_WEIGHT),
                [task.type, "success" if is_positive else "failure"],
                is_positive,
            ))
        except Exception as e:
            self._persistence_failed("add_memory", task.npc_id, e)

    def _persistence_failed(self, operation: str, npc_id: str, error: BaseException) -> None:
        failure = PersistenceFailure(f"{operation} failed for NPC {npc_id}: {error}")
        self.metrics.record_error("memory", operation)
        logger.warning(str(failure))

    async def _process_emotion(
        self,
        task: Task,
        final: Mapping[str, Any],
    ) -> Tuple[Optional[InteractionResult], Optional[str]]:
        player = task.player
        if not player:
            return None, None

        action, context = map_task_to_trigger(task, player, final)
        try:
            result = await self.emotion.process_interaction(task.npc_id, player, action, context)
        except UnknownEntity as e:
            logger.warning(f"Skipping emotional processing for task {task.id}: {e}")
            return None, str(e)

        if result.transition is not None:
            logger.info(
                f"Mood transition for NPC {task.npc_id}: {result.transition.trigger} "
                f"(intensity: {result.transition.intensity})"
            )
        return result, None

    def _log_action(
        self,
        task: Task,
        result: Mapping[str, Any],
        success: bool,
        started: float,
    ) -> Tuple[GameAction, List[ExploitDetection]]:
        player = task.player or NULL_ADDRESS
        session_id = task.session_id or self.analytics.ensure_session(player, task.npc_id)
        return self.analytics.record_action(
            session_id=session_id,
            player_id=player,
            npc_id=task.npc_id,
            action_type=task.type,
            parameters=task.params,
            result=dict(result),
            success=success,
            execution_time=(time.perf_counter() - started) * 1000,
            gas_used=result.get("gas_used"),
            transaction_hash=result.get("transaction_hash"),
        )

    def get_task(self, task_id: str) -> Optional[TaskRecord]:
        return self._tasks.get(task_id)

    # ------------------------------------------------------------------
    # Emotion passthroughs
    # ------------------------------------------------------------------

    async def trigger_emotional_interaction(
        self,
        npc_id: str,
        player_id: str,
        action: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> InteractionResult:
        return await self.emotion.process_interaction(npc_id, player_id, action, context)

    async def apply_decay(self, npc_id: str, hours_elapsed: float) -> EmotionalState:
        return await self.emotion.apply_decay(npc_id, hours_elapsed)

    def get_emotional_state(self, npc_id: str) -> Optional[EmotionalState]:
        return self.emotion.get_emotional_state(npc_id)

    def get_influence(self, npc_id: str) -> EmotionalInfluence:
        return self.emotion.get_influence(npc_id)

    def get_player_reputation(self, player_id: str) -> Optional[PlayerReputation]:
        return self.emotion.get_player_reputation(player_id)

    def get_npc_specific_reputation(self, player_id: str, npc_id: str) -> int:
        return self.emotion.get_npc_specific_reputation(player_id, npc_id)

    def get_mood_history(self, npc_id: str, limit: int = 20) -> List[MoodTransition]:
        return self.emotion.get_mood_history(npc_id, limit)

    # ------------------------------------------------------------------
    # Analytics passthroughs
    # ------------------------------------------------------------------

    def generate_report(self, time_range: Optional[Tuple[int, int]] = None) -> AnalyticsReport:
        return self.analytics.generate_report(time_range)

    def get_exploit_summary(self) -> Dict[str, Any]:
        return self.analytics.get_exploit_summary()

    def get_fairness_metrics(self) -> List[FairnessMetric]:
        """Latest fairness snapshot, computed now if none exists yet."""
        return self.analytics.fairness.latest or self.analytics.calculate_fairness_metrics()

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def cleanup(self) -> Dict[str, int]:
        removed = self.analytics.cleanup()
        removed["mood_transitions"] = self.emotion.cleanup()
        return removed

    def save_snapshot(self) -> None:
        if self.snapshots is None:
            return
        try:
            self.snapshots.save(SNAPSHOT_NAME, self.emotion.export_state())
        except PersistenceFailure as e:
            self.metrics.record_error("persistence", "snapshot")
            logger.warning(str(e))

    def restore_snapshot(self) -> bool:
        if self.snapshots is None:
            return False
        data = self.snapshots.load(SNAPSHOT_NAME)
        if data is None:
            return False
        self.emotion.load_state(data)
        return True

    def health(self) -> Dict[str, Any]:
        return {
            "status": "ok",
            "emotion": self.emotion.get_stats(),
            "analytics": self.analytics.get_stats(),
            "jobs": {job.name: {"running": job.running, "runs": job.runs, "failures": job.failures} for job in self._jobs},
            "tasks_tracked": len(self._tasks),
        }
