"""
Command-line entrypoint for sync.

Usage:
    python -m mindnest sync [--dry-run]      # push everything pending
    python -m mindnest status                # configuration + pending counts
    python -m mindnest link --token T [--name N]
    python -m mindnest unlink
    python -m mindnest verify                # check the token with the server
    python -m mindnest config [--server URL] [--token T] [--device-name N] [--enable|--disable]
    python -m mindnest scheduler             # run the nightly sync scheduler
    uvicorn mindnest.api.main:app --port 8000  # starts API
"""
import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from mindnest.config import get_settings

logger = logging.getLogger(__name__)


def _service():
    from mindnest.db.engine import get_engine
    from mindnest.sync.service import SyncService

    return SyncService(get_engine(), settings=get_settings())


async def _run_sync(dry_run: bool) -> int:
    from mindnest.sync.errors import SyncNotConfiguredError

    service = _service()
    if dry_run:
        plan = service.plan()
        for name, count in plan.counts.items():
            print(f"  {name:<12} {count}")
        print(f"  {'total':<12} {plan.total}")
        return 0

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except NotImplementedError:
        pass  # Windows: Ctrl+C raises KeyboardInterrupt instead

    try:
        result = await service.sync_all(cancel_event=cancel_event)
    except SyncNotConfiguredError as exc:
        print(f"Error: {exc}. Run `python -m mindnest link --token ...` first.")
        return 2
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            pass

    for name, counts in result.by_type.items():
        if counts.total:
            print(f"  {name:<12} {counts.success}/{counts.total} ok")
    print(
        f"Synced {result.success_items}/{result.total_items} items "
        f"in {result.duration_seconds:.1f}s"
    )
    if result.interrupted:
        print("Stopped early; remaining items will be picked up next run.")
    if not result.success:
        print(f"First error ({result.error_type.value}): {result.error_message}")
        return 1
    return 0


def _run_status() -> int:
    service = _service()
    server = service.server_settings()
    print(f"Server:      {server.url or '-'}")
    print(f"Device:      {server.device_name or '-'}")
    print(f"Enabled:     {'yes' if server.enabled else 'no'}")
    print(f"Token:       {'set' if server.token else 'not set'}")
    print(f"Configured:  {'yes' if server.is_complete else 'no'}")

    latest = service.get_sync_logs(limit=1)
    if latest:
        log = latest[0]
        outcome = "ok" if log.success else f"failed ({log.error_type})"
        print(f"Last sync:   {log.completed_at:%Y-%m-%d %H:%M:%S} UTC {log.entity_type} {outcome}")
    else:
        print("Last sync:   never")
    print(f"Pending:     {service.plan().total}")
    return 0


def _run_link(token: str, name: Optional[str]) -> int:
    from mindnest.db.settings_store import DEVICE_NAME_KEY

    service = _service()
    service.set_token(token)
    if name:
        service.settings_store.set_setting(DEVICE_NAME_KEY, name)
    print("Linked. Run `python -m mindnest verify` to check the token.")
    return 0


def _run_unlink() -> int:
    _service().clear_token()
    print("Unlinked; sync disabled.")
    return 0


async def _run_verify() -> int:
    from mindnest.sync.errors import SyncError, SyncNotConfiguredError

    try:
        valid = await _service().verify_token()
    except SyncNotConfiguredError as exc:
        print(f"Error: {exc}")
        return 2
    except SyncError as exc:
        print(f"Could not verify token ({exc.error_type.value}): {exc}")
        return 1
    print("Token is valid." if valid else "Token is invalid.")
    return 0 if valid else 1


def _run_config(args: argparse.Namespace) -> int:
    from mindnest.db.settings_store import (
        DEVICE_NAME_KEY,
        ENABLED_KEY,
        SERVER_TOKEN_KEY,
        SERVER_URL_KEY,
    )

    store = _service().settings_store
    changed = False
    if args.server is not None:
        store.set_setting(SERVER_URL_KEY, args.server.rstrip("/"))
        changed = True
    if args.token is not None:
        store.set_setting(SERVER_TOKEN_KEY, args.token)
        changed = True
    if args.device_name is not None:
        store.set_setting(DEVICE_NAME_KEY, args.device_name)
        changed = True
    if args.enabled is not None:
        store.set_setting(ENABLED_KEY, "true" if args.enabled else "false")
        changed = True

    for key, value in sorted(store.get_settings("sync.").items()):
        if key == SERVER_TOKEN_KEY and value:
            value = value[:4] + "..." if len(value) > 8 else "***"
        print(f"{key} = {value}")
    if not changed:
        print("(no changes)")
    return 0


async def _run_scheduler() -> int:
    from mindnest.db.engine import get_engine
    from mindnest.scheduler.jobs import build_scheduler

    settings = get_settings()
    scheduler = build_scheduler(get_engine())
    scheduler.start()
    logger.info("Scheduler started (nightly sync at %02d:00 UTC)", settings.sync_hour)
    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mindnest", description="Mindnest server sync")
    sub = parser.add_subparsers(dest="command", required=True)

    sync_p = sub.add_parser("sync", help="Push pending records to the server")
    sync_p.add_argument("--dry-run", action="store_true", help="Only list pending counts")

    sub.add_parser("status", help="Show sync configuration and pending counts")

    link_p = sub.add_parser("link", help="Store a server token and enable sync")
    link_p.add_argument("--token", required=True)
    link_p.add_argument("--name", help="Device name shown on the server")

    sub.add_parser("unlink", help="Remove the token and disable sync")
    sub.add_parser("verify", help="Check the stored token against the server")

    config_p = sub.add_parser("config", help="Show or change sync settings")
    config_p.add_argument("--server")
    config_p.add_argument("--token")
    config_p.add_argument("--device-name")
    toggle = config_p.add_mutually_exclusive_group()
    toggle.add_argument("--enable", dest="enabled", action="store_true", default=None)
    toggle.add_argument("--disable", dest="enabled", action="store_false")

    sub.add_parser("scheduler", help="Run the nightly sync scheduler")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    if args.command == "sync":
        return asyncio.run(_run_sync(args.dry_run))
    if args.command == "status":
        return _run_status()
    if args.command == "link":
        return _run_link(args.token, args.name)
    if args.command == "unlink":
        return _run_unlink()
    if args.command == "verify":
        return asyncio.run(_run_verify())
    if args.command == "config":
        return _run_config(args)
    if args.command == "scheduler":
        try:
            return asyncio.run(_run_scheduler())
        except KeyboardInterrupt:
            return 0
    return 2


if __name__ == "__main__":
    sys.exit(main())
