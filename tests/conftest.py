"""
Shared fixtures.
"""
import pytest

from npc_affect.types import GameAction
from npc_affect.util import new_id


class FakeClock:
    """Deterministic epoch-ms clock."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


def make_action(
    timestamp,
    player_id="0xplayer",
    npc_id="npc_1",
    action_type="quest",
    parameters=None,
    success=True,
    session_id="session_1",
):
    return GameAction(
        id=new_id("action"),
        session_id=session_id,
        player_id=player_id,
        npc_id=npc_id,
        action_type=action_type,
        timestamp=timestamp,
        parameters=parameters if parameters is not None else {"n": timestamp},
        result={},
        success=success,
        execution_time=12.5,
    )
