#!/usr/bin/env python3
"""Main entry point for gitagrip."""

import argparse
import os
import sys
import threading
from pathlib import Path

import logbook
from logbook.compat import redirect_logging

from gitagrip.core import (
    ConfigService,
    Coordinator,
    DiscoveryEngine,
    EventBus,
    GitService,
    GroupStore,
    RepositoryStore,
)
from gitagrip.core.git_service import DEFAULT_WORKERS
from gitagrip.ui import GitagripApp

LOG_FILE = "gitagrip.log"
LOG_FORMAT = (
    "[{record.time:%Y-%m-%d %H:%M:%S.%f}] {record.level_name}: "
    "{record.channel}: {record.message}"
)

log = logbook.Logger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="gitagrip",
        description="Terminal dashboard for many git repositories",
    )
    parser.add_argument(
        "directory",
        nargs="?",
        type=Path,
        help="Directory to scan for repositories (defaults to current directory)",
    )
    parser.add_argument(
        "-d", "--dir",
        dest="dir_option",
        type=Path,
        help="Directory to scan (same as the positional argument)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help=f"Write debug logging to {LOG_FILE}",
    )
    parser.add_argument(
        "--max-workers",
        type=int,
        default=DEFAULT_WORKERS,
        help=f"Concurrent git processes (default {DEFAULT_WORKERS})",
    )
    parser.add_argument(
        "--refresh-interval",
        type=float,
        default=0,
        help="Refresh every repository this often, in seconds (default 0 = off)",
    )
    args = parser.parse_args(argv)
    if args.max_workers < 1:
        parser.error("--max-workers must be at least 1")
    if args.refresh_interval < 0:
        parser.error("--refresh-interval cannot be negative")
    return args


def resolve_base_dir(args: argparse.Namespace) -> Path:
    """The directory to manage: -d/--dir, then the positional, then cwd."""
    directory = args.dir_option or args.directory or Path.cwd()
    return Path(os.path.expanduser(directory)).resolve()


def setup_logging(debug: bool) -> logbook.Handler:
    """File handler for the application; stdlib logging is routed into it."""
    handler = logbook.FileHandler(
        LOG_FILE,
        mode="a",
        level=logbook.DEBUG if debug else logbook.INFO,
        bubble=False,
        delay=True,
    )
    handler.format_string = LOG_FORMAT
    redirect_logging()
    return handler


def run(base_dir: Path, args: argparse.Namespace) -> int:
    """Wire the components, run the UI and shut everything down."""
    bus = EventBus()
    repo_store = RepositoryStore()
    group_store = GroupStore()

    config_service = ConfigService(bus, base_dir)
    config = config_service.load()

    coordinator = Coordinator(
        bus,
        repo_store,
        group_store,
        group_order=config.ordered_group_names(),
        show_ahead_behind=config.ui_show_ahead_behind,
    )
    discovery = DiscoveryEngine(bus, roots=[base_dir])
    git = GitService(bus, max_workers=args.max_workers)

    stop = threading.Event()
    bus.start()
    discovery.start_scan()
    if args.refresh_interval > 0:
        git.start_background_refresh(args.refresh_interval, stop)

    app = GitagripApp(bus, coordinator, git, config_service, base_dir=str(base_dir))
    try:
        app.run()
    finally:
        log.info("Shutting down")
        stop.set()
        discovery.close()
        git.close(timeout=0)
        coordinator.close()
        config_service.close()
        bus.close()
        if bus.dropped:
            log.warning("{} events were dropped during the session", bus.dropped)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    base_dir = resolve_base_dir(args)
    if not base_dir.exists():
        print(f"gitagrip: {base_dir} does not exist", file=sys.stderr)
        return 1
    if not base_dir.is_dir():
        print(f"gitagrip: {base_dir} is not a directory", file=sys.stderr)
        return 1

    handler = setup_logging(args.debug)
    with handler.applicationbound():
        log.info("Starting gitagrip in {}", base_dir)
        try:
            return run(base_dir, args)
        except Exception:
            log.exception("Fatal error")
            raise


if __name__ == "__main__":
    sys.exit(main())
