from __future__ import annotations

import argparse
import asyncio
import json
import logging
import re

from .config import RuntimeConfig, list_presets
from .errors import NPCAffectError, UpstreamFailure
from .logging_config import configure_logging
from .orchestrator import Task, TaskOrchestrator

COMMANDS = "quit | status | history | gift | help | attack | steal | quest | trade | duel | fail | decay | report"

# Shortcut command -> (trigger event, context)
INTERACTIONS = {
    "gift": ("gift_received", {"value": 50}),
    "help": ("player_helped", {"success": True}),
    "attack": ("player_attacked", {"target": "npc"}),
    "steal": ("theft_detected", {"success": True}),
}


def slug(name: str) -> str:
    """Convert a name to an id-safe slug."""
    s = re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")
    return s or "npc"


def _load_config(path) -> RuntimeConfig:
    if path:
        return RuntimeConfig.load(path)
    return RuntimeConfig().with_env_overrides()


def _print_status(orch: TaskOrchestrator, npc_id: str, player: str) -> None:
    state = orch.get_emotional_state(npc_id)
    print("\n[NPC Status]")
    print(f"  Emotions: {json.dumps(state.to_dict()) if state else 'unknown'}")
    print(f"  Summary: {orch.emotion.get_emotional_summary(npc_id)}")
    print(f"  Influence: {json.dumps(orch.get_influence(npc_id).to_dict())}")
    print(f"  Reputation with {npc_id}: {orch.get_npc_specific_reputation(player, npc_id)}")
    reputation = orch.get_player_reputation(player)
    if reputation:
        print(f"  Global reputation: {reputation.global_score}")
    print()


async def _simulate(args) -> None:
    orch = TaskOrchestrator(config=_load_config(args.config))
    npc_id = slug(args.npc)
    player = args.player

    await orch.initialize_npc(npc_id, args.archetype, args.backstory, [])
    print(f"[Initialized {npc_id} as {args.archetype}]")
    print(f"\nCommands: {COMMANDS}\n")

    while True:
        try:
            user_in = (await asyncio.to_thread(input, "You: ")).strip()
        except (EOFError, KeyboardInterrupt):
            print("\n[Goodbye]")
            break

        if not user_in:
            continue
        cmd, *rest = user_in.lower().split()

        if cmd == "quit":
            break

        try:
            if cmd == "status":
                _print_status(orch, npc_id, player)
            elif cmd == "history":
                for t in orch.get_mood_history(npc_id, 10):
                    print(f"  {t.trigger}: intensity {t.intensity} ({t.context})")
            elif cmd in INTERACTIONS:
                action, context = INTERACTIONS[cmd]
                result = await orch.trigger_emotional_interaction(npc_id, player, action, context)
                print(f"{npc_id}: {orch.emotion.get_emotional_summary(npc_id)} "
                      f"(reputation {result.reputation_delta:+d})\n")
            elif cmd in ("quest", "trade", "duel", "fail"):
                task_type = "quest" if cmd == "fail" else cmd
                params = {"fail": cmd == "fail", "reward": 100, "value": 150, "wager": 10}
                if task_type == "duel":
                    params["winner"] = player if rest[:1] == ["win"] else npc_id
                result = await orch.handle_task(Task(task_type, npc_id, params, player_address=player))
                trigger = result.emotion.transition.trigger if result.emotion and result.emotion.transition else "none"
                print(f"[{task_type} {'succeeded' if result.success else 'failed'}, trigger: {trigger}]")
                for exploit in result.exploits:
                    print(f"  [!] {exploit.pattern} ({exploit.severity.value})")
            elif cmd == "decay":
                hours = float(rest[0]) if rest else 1.0
                state = await orch.apply_decay(npc_id, hours)
                print(f"[Decayed {hours}h: {json.dumps(state.to_dict())}]")
            elif cmd == "report":
                print(json.dumps(orch.generate_report().to_dict(), indent=2, default=str))
            else:
                print(f"Unknown command. Commands: {COMMANDS}")
        except UpstreamFailure as e:
            print(f"[Task failed at {e.stage}: {e}]")
        except (NPCAffectError, ValueError) as e:
            print(f"[Error: {e}]")


def _serve(args) -> None:
    import uvicorn

    from .api import create_app

    app = create_app(config=_load_config(args.config))
    print(f"Starting NPC Affect API on http://{args.host}:{args.port}")
    uvicorn.run(app, host=args.host, port=args.port)


def main():
    ap = argparse.ArgumentParser(
        description="NPC Affect - emotion, reputation and analytics runtime for NPCs"
    )
    ap.add_argument("--config", help="Path to a YAML or JSON runtime config")
    ap.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    ap.add_argument("--log-dir", help="Also write JSON logs to this directory")
    sub = ap.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the REST API")
    serve.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    serve.add_argument("--port", type=int, default=8000, help="Port to bind to")

    sim = sub.add_parser("simulate", help="Interactive mock-mode session with one NPC")
    sim.add_argument("--npc", default="Merchant", help="NPC name")
    sim.add_argument("--archetype", default="merchant", choices=list_presets(), help="Archetype preset")
    sim.add_argument("--backstory", default="Runs the market stall by the gate.", help="NPC backstory")
    sim.add_argument("--player", default="0xplayer", help="Player address")

    args = ap.parse_args()

    configure_logging(
        level="DEBUG" if args.verbose else "WARNING",
        log_dir=args.log_dir,
    )

    if args.command == "serve":
        _serve(args)
    else:
        asyncio.run(_simulate(args))


if __name__ == "__main__":
    main()
