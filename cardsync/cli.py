"""
Cardsync CLI - Command-line interface.

Usage:
    cardsync simulate [--players N] [--seed S]   Play an all-bot game in-process
    cardsync serve [--host H] [--port P]         Run the host API with uvicorn
"""

import argparse
import logging
import random
import sys


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Cardsync - host-authoritative card game sync",
        prog="cardsync",
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default WARNING)")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Simulate command
    simulate_parser = subparsers.add_parser("simulate", help="Play an all-bot game in-process")
    simulate_parser.add_argument("--players", type=int, default=4, help="Number of bots (2-10)")
    simulate_parser.add_argument("--seed", type=int, default=None, help="Seed for a reproducible game")
    simulate_parser.add_argument(
        "--policy", choices=["first", "random"], default="first", help="Bot policy",
    )
    simulate_parser.add_argument("--history", action="store_true", help="Print every move")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the host API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.add_argument("--reload", action="store_true")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "simulate":
        return cmd_simulate(args)
    elif args.command == "serve":
        return cmd_serve(args)
    else:
        parser.print_help()
        sys.exit(1)


def cmd_simulate(args):
    """Run a full game between bots over the in-memory host/peer wiring."""
    from .bots import AutomatedPlayerDriver, FirstLegalPolicy, RandomPolicy
    from .engine_core import PlayerState, Reducer
    from .session import RoomManager
    from .sync import HostCoordinator, InMemoryChannel, InMemoryRecordStore, PeerCoordinator

    if not 2 <= args.players <= 10:
        print("Error: --players must be between 2 and 10")
        sys.exit(1)

    rng = random.Random(args.seed)
    records = InMemoryRecordStore()
    channel = InMemoryChannel()
    rooms = RoomManager(records, rng=rng)
    room = rooms.create_room("sim-host", "Simulator", args.players)

    host = HostCoordinator(room.record_id, records, channel, Reducer(rng=rng))
    host.connect()
    spectator = PeerCoordinator(room.record_id, records, channel)
    spectator.connect()

    players = [
        PlayerState(player_id=f"p_{i + 1}", name=f"Bot {i + 1}", is_automated=True)
        for i in range(args.players)
    ]
    host.start_session(players)

    policy = RandomPolicy(seed=args.seed) if args.policy == "random" else FirstLegalPolicy()
    driver = AutomatedPlayerDriver(host, [p.player_id for p in players], policy=policy)
    driver.start()
    driver.stop()

    state = host.state
    print(f"Room {room.code}: {args.players} players, seed {args.seed}")
    if args.history:
        for move in state.move_history:
            parts = [move.kind, move.player_id or "-", move.label or "", move.detail or ""]
            print("  " + " ".join(p for p in parts if p))

    if state.is_finished:
        winner = state.get_player(state.winner_id)
        print(f"Winner: {winner.name} with {state.round_points} points")
    else:
        print("Game did not finish")
    print(f"Moves submitted: {driver.submitted} (rejected {driver.rejected})")
    print(f"Final version: host {host.version}, spectator {spectator.version}")
    return 0 if state.is_finished else 1


def cmd_serve(args):
    """Run the FastAPI host server."""
    try:
        import uvicorn
    except ImportError:
        print("Error: uvicorn not installed. Install with: pip install 'cardsync[api]'")
        sys.exit(1)

    uvicorn.run("cardsync.api.app:app", host=args.host, port=args.port, reload=args.reload)
    return 0


if __name__ == "__main__":
    sys.exit(main())
