"""CLI commands for managing stored user data.

Provides subcommands for inspecting, exporting, importing and deleting
records, plus a full wipe. These are explicit, user-initiated actions, so
storage errors are reported instead of swallowed.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from .config import HavenConfig, build_connectivity_probe, build_event_log, build_store, load_config
from .errors import HavenError
from .session import HostEvents, SessionManager
from .storage import PersistentStore


def _get_store(config: HavenConfig | None = None) -> PersistentStore:
    """Create the store described by the environment."""
    return build_store(config or load_config())


def _error(message: str) -> int:
    print(f"Error: {message}", file=sys.stderr)
    return 1


def cmd_info(args: argparse.Namespace) -> int:
    """Show what is stored for a user."""
    info = _get_store().storage_info(args.user_id)

    if not info.has_data:
        print(f"No data stored for {args.user_id}.")
        return 0

    print(f"\nUser: {args.user_id}")
    print("-" * 40)
    print(f"Last updated: {info.last_updated}")
    print(f"Version: {info.version}")
    print(f"Size: {info.data_size} bytes")
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    """Export a user's record as JSON."""
    try:
        envelope = _get_store().export(args.user_id)
    except HavenError as e:
        return _error(str(e))

    if args.output:
        Path(args.output).write_text(envelope + "\n", encoding="utf-8")
        print(f"Exported {args.user_id} to {args.output}")
    else:
        print(envelope)
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    """Import an exported record for a user."""
    path = Path(args.file)
    if not path.exists():
        return _error(f"File not found: {path}")

    try:
        _get_store().import_(args.user_id, path.read_text(encoding="utf-8"))
    except HavenError as e:
        return _error(str(e))

    print(f"Imported {path} for {args.user_id}")
    return 0


def cmd_delete(args: argparse.Namespace) -> int:
    """Delete a user's record."""
    try:
        removed = _get_store().delete(args.user_id)
    except HavenError as e:
        return _error(str(e))

    print(f"Deleted {removed} key(s) for {args.user_id}")
    return 0


def cmd_clear(args: argparse.Namespace) -> int:
    """Remove every stored record."""
    if not args.yes:
        return _error("Refusing to clear all data without --yes")

    try:
        removed = _get_store().clear_all()
    except HavenError as e:
        return _error(str(e))

    print(f"Cleared {removed} key(s)")
    return 0


async def _probe_session(config: HavenConfig, user_id: str) -> int:
    event_log = build_event_log(config)
    events = HostEvents()
    probe = build_connectivity_probe(config, events)
    manager = SessionManager(
        build_store(config, event_log),
        events=events,
        event_log=event_log,
        defaults=config.session_defaults(),
    )
    try:
        if probe is not None:
            await probe.check()

        session = await manager.load(user_id)
        if session is None:
            print(f"No resumable session for {user_id}.")
            return 0

        analytics = manager.analytics()
        print(f"\nSession: {session.session_id}")
        print("-" * 40)
        print(f"Activity count: {analytics.activity_count}")
        print(f"Pending recommendations: {len(session.pending_recommendations)}")
        print(f"Time until timeout: {int(analytics.time_until_timeout)}s")
        if probe is not None:
            print(f"Connectivity: {'online' if events.online else 'offline'}")
        return 0
    finally:
        await manager.close()
        if probe is not None:
            await probe.aclose()


def cmd_session(args: argparse.Namespace) -> int:
    """Report whether a user's stored session can still be resumed."""
    try:
        return asyncio.run(_probe_session(load_config(), args.user_id))
    except HavenError as e:
        return _error(str(e))


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the haven CLI."""
    parser = argparse.ArgumentParser(
        prog="haven",
        description="Manage Haven's locally stored user data",
    )

    subparsers = parser.add_subparsers(dest="command", help="Sub-command help")

    info_parser = subparsers.add_parser("info", help="Show storage info for a user")
    info_parser.add_argument("user_id", help="User identifier")

    export_parser = subparsers.add_parser("export", help="Export a user's data as JSON")
    export_parser.add_argument("user_id", help="User identifier")
    export_parser.add_argument(
        "-o", "--output",
        help="Write to this file instead of stdout",
    )

    import_parser = subparsers.add_parser("import", help="Import exported JSON for a user")
    import_parser.add_argument("user_id", help="User identifier")
    import_parser.add_argument("file", help="Path to an export file")

    delete_parser = subparsers.add_parser("delete", help="Delete a user's data")
    delete_parser.add_argument("user_id", help="User identifier")

    clear_parser = subparsers.add_parser("clear", help="Delete all stored data")
    clear_parser.add_argument(
        "--yes",
        action="store_true",
        help="Confirm wiping every user's data",
    )

    session_parser = subparsers.add_parser("session", help="Check for a resumable session")
    session_parser.add_argument("user_id", help="User identifier")

    return parser


def run_cli(argv: list[str] | None = None) -> int:
    """Run the CLI with given arguments.

    Args:
        argv: Command-line arguments. Uses sys.argv[1:] if None.

    Returns:
        Exit code (0 for success, non-zero for error).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "info": cmd_info,
        "export": cmd_export,
        "import": cmd_import,
        "delete": cmd_delete,
        "clear": cmd_clear,
        "session": cmd_session,
    }

    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    return handler(args)


if __name__ == "__main__":
    sys.exit(run_cli())
