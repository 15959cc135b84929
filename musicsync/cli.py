"""CLI with subcommands: sync, devices."""
from __future__ import annotations

import argparse
import signal
import sys
from pathlib import Path
from typing import Optional

from .core.cancellation import CancellationToken
from .core.config import load_config
from .core.errors import OperationCancelled
from .logging.rich_logger import QuietProgressReporter, RichProgressReporter, configure_logging


def create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="musicsync",
        description="Sync a music library to a device, converting what it can't play.",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Verbose output (-vv for debug logging)",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # ============ SYNC command ============
    sync_parser = subparsers.add_parser(
        "sync",
        help="Synchronize the source library to the target",
    )
    sync_parser.add_argument(
        "configs",
        nargs="+",
        type=Path,
        help="JSON config files; later files override earlier ones",
    )
    sync_parser.add_argument(
        "--target",
        type=str,
        default=None,
        help="Override the target URI (file://PATH or adb://SERIAL/PATH)",
    )
    sync_parser.add_argument(
        "-w", "-j", "--workers",
        dest="workers",
        type=int,
        default=None,
        help="Number of convert workers (default: from config, else CPU count)",
    )

    # ============ DEVICES command ============
    devices_parser = subparsers.add_parser(
        "devices",
        help="List devices known to the adb server",
    )
    devices_parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="adb server host (default: 127.0.0.1)",
    )
    devices_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="adb server port (default: 5037)",
    )

    return parser


# ============ Command Handlers ============

def cmd_sync(args: argparse.Namespace, reporter, cancel: CancellationToken) -> int:
    """Handle the sync command."""
    from .services.sync import SyncService

    config = load_config(args.configs)
    overrides = {}
    if args.target:
        overrides["target"] = args.target
    if args.workers:
        overrides["workers_convert"] = max(1, args.workers)
    if overrides:
        config = config.with_overrides(**overrides)

    reporter.print_header("musicsync")
    reporter.print_config({
        "Source": str(config.source_dir),
        "Target": config.target,
        "Workers (read/convert/write)": f"{config.workers_read}/{config.workers_convert}/{config.workers_write}",
        "Excludes": ", ".join(config.exclude) or "-",
    })

    stats = SyncService(config, reporter).run(cancel)
    reporter.print_stats(stats)
    return 0


def cmd_devices(args: argparse.Namespace, reporter, cancel: CancellationToken) -> int:
    """Handle the devices command."""
    from .adb.client import DEFAULT_HOST, DEFAULT_PORT, AdbClient

    AdbClient.start_server()
    client = AdbClient(args.host or DEFAULT_HOST, args.port or DEFAULT_PORT)
    devices = client.get_devices(cancel)
    if not devices:
        reporter.info("No devices found")
        return 0
    reporter.print_devices((d.serial, d.state) for d in devices)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if getattr(args, "quiet", False):
        reporter = QuietProgressReporter()
    else:
        reporter = RichProgressReporter(verbose=args.verbose > 0)
    configure_logging(args.verbose)

    if not args.command:
        parser.print_help()
        return 0

    # first Ctrl+C stops the workers cooperatively, a second one aborts
    cancel = CancellationToken()

    def on_interrupt(signum, frame):
        if cancel.is_cancelled:
            raise KeyboardInterrupt
        reporter.warning("Cancelling, press Ctrl+C again to abort")
        cancel.cancel()

    previous_handler = signal.signal(signal.SIGINT, on_interrupt)
    try:
        if args.command == "sync":
            return cmd_sync(args, reporter, cancel)
        elif args.command == "devices":
            return cmd_devices(args, reporter, cancel)
        else:
            reporter.error(f"Unknown command: {args.command}")
            return 1

    except (KeyboardInterrupt, OperationCancelled):
        reporter.warning("Cancelled")
        return 130
    except Exception as e:
        reporter.error(f"Error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1
    finally:
        signal.signal(signal.SIGINT, previous_handler)


if __name__ == "__main__":
    sys.exit(main())
