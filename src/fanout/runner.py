#!/usr/bin/env python3
"""Main entry point for fanout."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from .config import Settings, load_settings, read_lines
from .dispatch import CommandStatus
from .fleet import Fleet, FleetAborted, RunSummary

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_ABORTED = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fanout",
        description="Run each command on one of several SSH hosts, retrying on another host on failure",
    )
    parser.add_argument(
        "--cmds",
        type=Path,
        default=Path("cmds.txt"),
        help="File with commands to run, one per line",
    )
    parser.add_argument(
        "--hosts",
        type=Path,
        default=Path("hosts.txt"),
        help="File with hosts, one per line ([user@]host[:port] or an ssh config alias)",
    )
    parser.add_argument("--config", type=Path, help="Path to YAML settings file")
    parser.add_argument("--output-dir", type=Path, help="Directory for attempt and final logs")
    parser.add_argument(
        "--max-workers",
        type=int,
        help="Run at most this many commands at once (default: all at once)",
    )
    parser.add_argument("--key", type=Path, help="Override SSH key path from settings")
    parser.add_argument(
        "--connect-timeout",
        type=float,
        help="SSH connection timeout in seconds (default: 2)",
    )
    parser.add_argument("--seed", type=int, help="Seed for host ordering")
    parser.add_argument(
        "--dashboard",
        action="store_true",
        help="Run with the TUI dashboard",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Apply command-line overrides on top of file settings."""
    if args.output_dir:
        settings.output_dir = args.output_dir.expanduser()
    if args.max_workers is not None:
        if args.max_workers <= 0:
            raise ValueError(f"--max-workers must be > 0, got {args.max_workers}")
        settings.max_workers = args.max_workers
    if args.key:
        settings.ssh.ssh_key = args.key.expanduser()
    if args.connect_timeout is not None:
        if args.connect_timeout <= 0:
            raise ValueError(f"--connect-timeout must be > 0, got {args.connect_timeout}")
        settings.ssh.connect_timeout = args.connect_timeout
    if args.seed is not None:
        settings.seed = args.seed
    return settings


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(message)s",
        datefmt="%Y/%m/%d %H:%M:%S",
        stream=sys.stderr,
    )
    # asyncssh logs every connection at INFO
    logging.getLogger("asyncssh").setLevel(logging.DEBUG if verbose else logging.WARNING)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    argv = sys.argv[1:] if argv is None else argv
    parser = build_parser()
    if argv and argv[0] == "help":
        parser.print_help()
        return EXIT_OK
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    # Load inputs and settings
    try:
        settings = apply_overrides(load_settings(args.config), args)
        commands = read_lines(args.cmds)
        hosts = read_lines(args.hosts)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_FAILED

    if settings.ssh.ssh_key and not settings.ssh.ssh_key.exists():
        print(f"Error: SSH key not found: {settings.ssh.ssh_key}", file=sys.stderr)
        return EXIT_FAILED

    if not hosts:
        logger.warning("No hosts in %s; every command will fail", args.hosts)

    if not args.dashboard:
        # Run without TUI dashboard (default)
        return _run_headless(commands, hosts, settings)

    from .dashboard import Dashboard

    app = Dashboard(commands, hosts, settings)
    app.run()

    if app.aborted is not None:
        print(f"\n{app.aborted}", file=sys.stderr)
        return EXIT_ABORTED
    if app.summary is None:
        # Quit before the run finished
        return EXIT_FAILED
    return _report(app.summary)


def _report(summary: RunSummary) -> int:
    if summary.failed:
        failed = ", ".join(str(cmd_id) for cmd_id in sorted(summary.failed_ids))
        print(f"\nFailed commands: {failed}", file=sys.stderr)
        return EXIT_FAILED
    return EXIT_OK


def _run_headless(commands: list[str], hosts: list[str], settings: Settings) -> int:
    """Run the fleet without TUI dashboard."""
    # ANSI colors for different commands
    colors = [
        "\033[36m",  # Cyan
        "\033[33m",  # Yellow
        "\033[35m",  # Magenta
        "\033[32m",  # Green
        "\033[34m",  # Blue
        "\033[91m",  # Light Red
        "\033[96m",  # Light Cyan
        "\033[93m",  # Light Yellow
    ]
    reset = "\033[0m"

    def on_output(command_id: int, line: str) -> None:
        color = colors[command_id % len(colors)]
        print(f"{color}[{command_id}]{reset} {line}")

    def on_status(command_id: int, status: CommandStatus) -> None:
        color = colors[command_id % len(colors)]
        print(f"{color}[{command_id}]{reset} Status: {status.value}")

    fleet = Fleet(
        commands,
        hosts,
        settings,
        on_output=on_output,
        on_status=on_status,
    )

    try:
        summary = asyncio.run(fleet.run_all())
    except FleetAborted as e:
        logger.error("%s", e)
        return EXIT_ABORTED

    return _report(summary)


if __name__ == "__main__":
    sys.exit(main())
