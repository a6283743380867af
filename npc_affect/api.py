"""
REST API server for the NPC affect runtime.

Provides HTTP endpoints for game integration: NPC setup, task handling,
emotional interactions and the analytics views.

Run with:
    python -m npc_affect.api --config runtime.yaml
"""
from __future__ import annotations

import argparse
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import __version__
from .config import RuntimeConfig, list_presets
from .errors import UnknownEntity, UpstreamFailure
from .orchestrator import Task, TaskOrchestrator
from .types import ExploitStatus, SessionOutcome

logger = logging.getLogger(__name__)


# ============================================================================
# Pydantic Models for API
# ============================================================================

class NPCInitRequest(BaseModel):
    """Request to create or re-initialize an NPC."""
    archetype: str = Field("balanced", description="Archetype preset name")
    backstory: str = Field("", description="Free-text backstory for the memory store")
    quirks: List[str] = Field(default_factory=list)


class InteractionRequest(BaseModel):
    """A raw player action against an NPC."""
    player_id: str
    action: str = Field(..., description="Trigger event name, e.g. gift_received")
    context: Dict[str, Any] = Field(default_factory=dict)


class DecayRequest(BaseModel):
    hours: float = Field(..., ge=0.0, description="Hours elapsed since the last decay")


class TaskRequest(BaseModel):
    """A unit of NPC work routed through the task pipeline."""
    type: str = Field(..., description="Task type: duel, quest, trade, ...")
    npc_id: str
    params: Dict[str, Any] = Field(default_factory=dict)
    player_address: Optional[str] = None
    session_id: Optional[str] = None


class SessionStartRequest(BaseModel):
    player_id: str
    npc_id: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SessionEndRequest(BaseModel):
    outcome: SessionOutcome


class DialogueRequest(BaseModel):
    """A dialogue branch selection."""
    session_id: str
    npc_id: str
    player_id: str
    branch_path: List[str]
    choices: List[str]
    selected_choice: str
    emotional_context: Dict[str, Any] = Field(default_factory=dict)


class ExploitStatusRequest(BaseModel):
    status: ExploitStatus
    action_taken: Optional[str] = None


# ============================================================================
# API Server
# ============================================================================

class AffectAPIServer:
    """
    FastAPI-based REST server around a TaskOrchestrator.

    The orchestrator's periodic jobs run for the lifetime of the app.
    """

    def __init__(self, orchestrator: Optional[TaskOrchestrator] = None, config: Optional[RuntimeConfig] = None):
        self.orchestrator = orchestrator or TaskOrchestrator(config=config)

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            self.orchestrator.start()
            try:
                yield
            finally:
                await self.orchestrator.stop()

        self.app = FastAPI(
            title="NPC Affect API",
            description="Emotion, reputation and analytics runtime for NPCs",
            version=__version__,
            lifespan=lifespan,
        )

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self._register_error_handlers()
        self._register_routes()

    def _register_error_handlers(self):
        @self.app.exception_handler(UnknownEntity)
        async def unknown_entity(request: Request, exc: UnknownEntity):
            return JSONResponse(status_code=404, content={"detail": str(exc)})

        @self.app.exception_handler(UpstreamFailure)
        async def upstream_failure(request: Request, exc: UpstreamFailure):
            return JSONResponse(
                status_code=502,
                content={"success": False, "stage": exc.stage, "error": str(exc)},
            )

    def _register_routes(self):
        """Register all API routes."""
        orch = self.orchestrator

        @self.app.get("/")
        async def root():
            """API health check."""
            return {"version": __version__, **orch.health()}

        @self.app.get("/presets", response_model=List[str])
        async def get_presets():
            return list_presets()

        # -- NPCs ----------------------------------------------------------

        @self.app.post("/npc/{npc_id}/init")
        async def init_npc(npc_id: str, request: NPCInitRequest):
            """Initialize an NPC from an archetype."""
            state = await orch.initialize_npc(npc_id, request.archetype, request.backstory, request.quirks)
            return {"npc_id": npc_id, "emotional_state": state.to_dict()}

        @self.app.get("/npc/{npc_id}/emotion")
        async def get_emotion(npc_id: str):
            state = orch.get_emotional_state(npc_id)
            if state is None:
                raise UnknownEntity("NPC", npc_id)
            return {
                "npc_id": npc_id,
                "emotional_state": state.to_dict(),
                "summary": orch.emotion.get_emotional_summary(npc_id),
            }

        @self.app.get("/npc/{npc_id}/influence")
        async def get_influence(npc_id: str):
            return orch.get_influence(npc_id).to_dict()

        @self.app.get("/npc/{npc_id}/mood-history")
        async def get_mood_history(npc_id: str, limit: int = Query(20, ge=1, le=500)):
            return [t.to_dict() for t in orch.get_mood_history(npc_id, limit)]

        @self.app.post("/npc/{npc_id}/decay")
        async def apply_decay(npc_id: str, request: DecayRequest):
            state = await orch.apply_decay(npc_id, request.hours)
            return {"npc_id": npc_id, "emotional_state": state.to_dict()}

        @self.app.post("/npc/{npc_id}/interaction")
        async def interact(npc_id: str, request: InteractionRequest):
            """Apply a player action directly to the NPC's emotional state."""
            result = await orch.trigger_emotional_interaction(
                npc_id, request.player_id, request.action, request.context
            )
            return result.to_dict()

        # -- Tasks ---------------------------------------------------------

        @self.app.post("/tasks")
        async def handle_task(request: TaskRequest):
            task = Task(
                type=request.type,
                npc_id=request.npc_id,
                params=request.params,
                player_address=request.player_address,
                session_id=request.session_id,
            )
            result = await orch.handle_task(task)
            return result.to_dict()

        @self.app.get("/tasks/{task_id}")
        async def get_task(task_id: str):
            record = orch.get_task(task_id)
            if record is None:
                raise UnknownEntity("Task", task_id)
            return record.to_dict()

        # -- Reputation ----------------------------------------------------

        @self.app.get("/players/{player_id}/reputation")
        async def get_reputation(player_id: str, npc_id: Optional[str] = None):
            if npc_id is not None:
                return {
                    "player_id": player_id,
                    "npc_id": npc_id,
                    "score": orch.get_npc_specific_reputation(player_id, npc_id),
                }
            reputation = orch.get_player_reputation(player_id)
            if reputation is None:
                raise UnknownEntity("Player", player_id)
            return reputation.to_dict()

        # -- Sessions and dialogue -----------------------------------------

        @self.app.post("/sessions")
        async def start_session(request: SessionStartRequest):
            session = orch.analytics.start_session(request.player_id, request.npc_id, request.metadata)
            return session.to_dict()

        @self.app.post("/sessions/{session_id}/end")
        async def end_session(session_id: str, request: SessionEndRequest):
            return orch.analytics.end_session(session_id, request.outcome).to_dict()

        @self.app.post("/dialogue")
        async def record_dialogue(request: DialogueRequest):
            branch = orch.analytics.record_dialogue_branch(
                request.session_id,
                request.npc_id,
                request.player_id,
                request.branch_path,
                request.choices,
                request.selected_choice,
                request.emotional_context,
            )
            return branch.to_dict()

        # -- Analytics -----------------------------------------------------

        @self.app.get("/analytics/report")
        async def get_report(start: Optional[int] = None, end: Optional[int] = None):
            time_range = (start, end) if start is not None and end is not None else None
            return orch.generate_report(time_range).to_dict()

        @self.app.get("/exploits/summary")
        async def get_exploit_summary():
            return orch.get_exploit_summary()

        @self.app.patch("/exploits/{exploit_id}")
        async def update_exploit(exploit_id: str, request: ExploitStatusRequest):
            exploit = orch.analytics.update_exploit_status(exploit_id, request.status, request.action_taken)
            return exploit.to_dict()

        @self.app.get("/fairness")
        async def get_fairness():
            return [m.to_dict() for m in orch.get_fairness_metrics()]

        @self.app.get("/metrics")
        async def get_metrics():
            return orch.metrics.summary()


def create_app(
    config: Optional[RuntimeConfig] = None,
    orchestrator: Optional[TaskOrchestrator] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    server = AffectAPIServer(orchestrator=orchestrator, config=config)
    return server.app


def main():
    """Run the API server from command line."""
    import uvicorn

    parser = argparse.ArgumentParser(description="NPC Affect API Server")
    parser.add_argument("--config", help="Path to a YAML or JSON runtime config")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    args = parser.parse_args()

    config = RuntimeConfig.load(args.config) if args.config else RuntimeConfig().with_env_overrides()
    app = create_app(config=config)

    print(f"Starting NPC Affect API on http://{args.host}:{args.port}")
    print(f"API docs: http://{args.host}:{args.port}/docs")

    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
