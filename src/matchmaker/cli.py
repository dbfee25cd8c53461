"""CLI entry point for the matchmaker.

Provides ``main()`` as the sync entry point for the ``matchmaker``
console script, and ``async_main(args)`` which sets up logging, opens the
SQLite store under ``--data-dir`` and runs one sub-command.

Usage::

    matchmaker status
    matchmaker join 76561198000000001
    matchmaker pick <leader-id> <player-id>
    matchmaker ban <leader-id> de_nuke
    matchmaker run                  # background triggers until Ctrl+C
"""

import argparse
import asyncio
import json
import logging
import sys

from matchmaker.command_client import PterodactylClient, server_connection_info
from matchmaker.config import MatchmakerConfig
from matchmaker.logging_config import setup_logging
from matchmaker.match_config import current_match_config
from matchmaker.models import PlayerProfile, Team
from matchmaker.publication import PublicationPipeline
from matchmaker.results import Applied, Rejected, Unchanged
from matchmaker.roster import StoreRoster
from matchmaker.server_start import ServerStartCoordinator
from matchmaker.service import MatchService
from matchmaker.store import SqliteDocumentStore
from matchmaker.triggers import ShutdownHandler, TriggerRunner

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the matchmaker CLI."""
    parser = argparse.ArgumentParser(
        prog="matchmaker",
        description="Coordinate a 10-player CS2 pick-up match",
    )
    parser.add_argument(
        "--data-dir",
        type=str,
        default=None,
        help="Data directory for the DB and logs (default: $MATCHMAKER_DATA_DIR or data)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show DEBUG output on the console",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Print the draft and the current match")

    join = sub.add_parser("join", help="Add a player to the queue")
    join.add_argument("player_id")

    leave = sub.add_parser("leave", help="Remove a player from the queue")
    leave.add_argument("player_id")

    sub.add_parser("select-leaders", help="Draw leaders if the deadline has passed")

    pick = sub.add_parser("pick", help="Pick a player for the leader's team")
    pick.add_argument("requester_id", help="Leader making the pick")
    pick.add_argument("picked_id", help="Player being picked")

    ban = sub.add_parser("ban", help="Ban a map for the leader's team")
    ban.add_argument("requester_id", help="Leader making the ban")
    ban.add_argument("map_name", help="Map to ban, e.g. de_nuke")

    finalize = sub.add_parser("finalize", help="Confirm the match is over")
    finalize.add_argument("requester_id", help="Leader confirming")

    sub.add_parser("cancel", help="Reset everything and restart the game server")
    sub.add_parser("publish", help="Publish the draft if the veto is complete")
    sub.add_parser("start", help="Send the load-match command if the match is ready")

    load = sub.add_parser("load", help="Write and start a match directly (debug)")
    load.add_argument("map_name")
    load.add_argument("--team1", nargs="+", required=True, metavar="ID")
    load.add_argument("--team2", nargs="+", required=True, metavar="ID")

    profile = sub.add_parser("profile", help="Store a player's display name")
    profile.add_argument("steam_id")
    profile.add_argument("persona_name")

    sub.add_parser("config", help="Print the match configuration served to the server")
    sub.add_parser("connection", help="Print steam://connect URLs")
    sub.add_parser("run", help="Run background triggers until Ctrl+C")
    return parser


def _print_json(value) -> None:
    print(json.dumps(value, indent=2, default=str))


def _report(outcome) -> int:
    """Print a command outcome; return the process exit code."""
    if isinstance(outcome, Applied):
        print(f"ok: {outcome.event} (state={outcome.draft.state})")
        return 0
    if isinstance(outcome, Unchanged):
        print(f"unchanged: {outcome.note}")
        return 0
    if isinstance(outcome, Rejected):
        print(f"rejected: {outcome.reason} {outcome.message}")
        return 1
    if outcome.ok:
        print(f"ok: {outcome}")
        return 0
    print(f"failed: {outcome.reason} {outcome.error or ''}".rstrip())
    return 1


async def _run_triggers(runner: TriggerRunner, shutdown: ShutdownHandler) -> int:
    await runner.start()
    await runner.service.ensure_draft()
    # Catch up with anything written while no runner was up
    await runner.publication.publish_if_ready()
    await runner.starter.start_match_if_ready()
    interval = runner.config.change_poll_interval
    try:
        while not await shutdown.wait(interval):
            await runner.poll()
    finally:
        await runner.stop()
    return 0


async def _execute(
    args: argparse.Namespace,
    config: MatchmakerConfig,
    service: MatchService,
    shutdown: ShutdownHandler,
) -> int:
    """Run the sub-command named by ``args.command``; return the exit code."""
    store = service.store
    command = args.command

    if command == "status":
        draft = await service.ensure_draft()
        current = await service.current_match()
        _print_json({
            "draft": draft.to_document(),
            "current": current.to_document() if current else None,
        })
        return 0
    if command == "join":
        return _report(await service.join_queue(args.player_id))
    if command == "leave":
        return _report(await service.leave_queue(args.player_id))
    if command == "select-leaders":
        return _report(await service.select_leaders())
    if command == "pick":
        return _report(await service.pick_player(args.requester_id, args.picked_id))
    if command == "ban":
        return _report(await service.ban_map(args.requester_id, args.map_name))
    if command == "finalize":
        return _report(await service.request_finalize(args.requester_id))
    if command == "cancel":
        result = await service.cancel()
        if result.command_sent:
            print("ok: match reset, server restarted")
            return 0
        print(f"ok: match reset, server restart failed: {result.command_error}")
        return 1
    if command == "publish":
        return _report(await PublicationPipeline(service).publish_if_ready())
    if command == "start":
        return _report(await ServerStartCoordinator(service).start_match_if_ready())
    if command == "load":
        team1 = Team(display_name=config.team1_name, players=args.team1)
        team2 = Team(display_name=config.team2_name, players=args.team2)
        coordinator = ServerStartCoordinator(service)
        return _report(await coordinator.load_match(args.map_name, team1, team2))
    if command == "profile":
        roster = StoreRoster(store, config.profiles_collection)
        await asyncio.to_thread(
            roster.upsert,
            PlayerProfile(steam_id=args.steam_id, persona_name=args.persona_name),
        )
        print(f"ok: {args.steam_id} -> {args.persona_name}")
        return 0
    if command == "config":
        roster = StoreRoster(store, config.profiles_collection)
        result = await asyncio.to_thread(
            current_match_config, store, roster, config.current_path, config.team_size
        )
        if not result.ok:
            print(f"failed: {result.reason} {result.error}")
            return 1
        _print_json(result.config.model_dump())
        return 0
    if command == "connection":
        try:
            info = server_connection_info(config)
        except ValueError as exc:
            print(f"failed: {exc}")
            return 1
        _print_json({"connectUrl": info.connect_url, "spectateUrl": info.spectate_url})
        return 0
    if command == "run":
        logger.info("Running triggers on %s (Ctrl+C to stop)", config.db_path)
        return await _run_triggers(TriggerRunner(service), shutdown)
    raise ValueError(f"Unknown command: {command}")


async def async_main(args: argparse.Namespace) -> int:
    """Async entry point: set up components, run one command."""
    overrides = {}
    if args.data_dir is not None:
        overrides = {"data_dir": args.data_dir, "db_path": f"{args.data_dir}/matchmaker.db"}
    config = MatchmakerConfig.from_env(**overrides)

    console_level = logging.DEBUG if args.verbose else logging.INFO
    if args.command != "run" and not args.verbose:
        console_level = logging.WARNING
    log_file = setup_logging(data_dir=config.data_dir, console_level=console_level)
    logger.debug("matchmaker %s, db=%s, log=%s", args.command, config.db_path, log_file)

    store = SqliteDocumentStore(config.db_path, config.transaction_max_attempts)
    client = PterodactylClient(config)
    service = MatchService(store, config, commands=client)
    shutdown = ShutdownHandler()
    if args.command == "run":
        shutdown.install()

    try:
        return await _execute(args, config, service, shutdown)
    finally:
        await client.aclose()
        store.close()
        shutdown.restore()
        logging.shutdown()


def main() -> None:
    """Sync entry point for the matchmaker console script."""
    parser = build_parser()
    args = parser.parse_args()
    try:
        code = asyncio.run(async_main(args))
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
