"""
Exception taxonomy.

UnknownEntity      - NPC or session was never initialized. Fatal to the call.
UpstreamFailure    - a perception/planner/action/referee collaborator failed.
StageTimeout       - a pipeline stage exceeded its time budget.
PersistenceFailure - memory or notification write failed. Logged, never raised
                     past the operation that attempted it.
"""
from __future__ import annotations

from typing import Optional


class NPCAffectError(Exception):
    """Base class for all runtime errors."""


class ConfigError(NPCAffectError):
    """Invalid configuration or trigger catalog."""


class UnknownEntity(NPCAffectError):
    """Referenced NPC or session has not been initialized."""

    def __init__(self, kind: str, entity_id: str):
        super().__init__(f"{kind} {entity_id} not found")
        self.kind = kind
        self.entity_id = entity_id


class UpstreamFailure(NPCAffectError):
    """A task pipeline collaborator raised or misbehaved."""

    def __init__(self, stage: str, cause: Optional[BaseException] = None, message: str = ""):
        text = message or (f"{type(cause).__name__}: {cause}" if cause else "upstream failure")
        super().__init__(f"{stage} failed: {text}")
        self.stage = stage
        self.cause = cause


class StageTimeout(UpstreamFailure):
    """A pipeline stage did not finish within its timeout."""

    def __init__(self, stage: str, timeout: float):
        super().__init__(stage, message=f"timed out after {timeout:.1f}s")
        self.timeout = timeout


class PersistenceFailure(NPCAffectError):
    """Auxiliary write (memory, notification, snapshot) failed."""
