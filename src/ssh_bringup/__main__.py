"""
CLI interface for ssh-bringup.

Waits for a freshly provisioned machine to accept SSH, then optionally runs
one command on it.

Usage:
    python -m ssh_bringup -i keyfile 203.0.113.7                 # wait only
    python -m ssh_bringup -i keyfile 203.0.113.7 uptime          # wait, then run
    python -m ssh_bringup -i keyfile -l ubuntu -p 2222 --timeout 5m host cmd
    python -m ssh_bringup -i keyfile --events host               # dump JSONL events
    python -m ssh_bringup --help

Ctrl-C while waiting cancels the step within one poll interval.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from ssh_bringup.config import DEFAULT_PORT, DEFAULT_USERNAME, AttemptPolicy, SSHSettings, parse_duration
from ssh_bringup.coordinator import StepAction
from ssh_bringup.events import EventCollector
from ssh_bringup.state import StepState
from ssh_bringup.step import ConnectSSHStep
from ssh_bringup.ui import ConsoleUi


def duration_arg(value: str) -> float:
    """argparse type for duration options."""
    try:
        seconds = parse_duration(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e
    if seconds <= 0:
        raise argparse.ArgumentTypeError(f"duration must be positive, got {value!r}")
    return seconds


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="ssh_bringup",
        description="Wait for a provisioned machine to accept SSH, then optionally run a command.",
    )
    parser.add_argument(
        "host",
        help="Target address (hostname or IP)",
    )
    parser.add_argument(
        "command",
        nargs="?",
        help="Command to execute once connected",
    )
    parser.add_argument(
        "-i", "--identity",
        type=Path,
        required=True,
        help="Private key file",
    )
    parser.add_argument(
        "-l", "--login",
        default=DEFAULT_USERNAME,
        help=f"Username (default: {DEFAULT_USERNAME})",
    )
    parser.add_argument(
        "-p", "--port",
        type=int,
        default=DEFAULT_PORT,
        help=f"SSH port (default: {DEFAULT_PORT})",
    )
    parser.add_argument(
        "--timeout",
        type=duration_arg,
        default="1m",
        help="Overall time to wait for SSH, e.g. 90s, 5m, 1m30s (default: 1m)",
    )
    parser.add_argument(
        "--dial-timeout",
        type=duration_arg,
        default="10s",
        help="Timeout for each TCP dial (default: 10s)",
    )
    parser.add_argument(
        "--backoff",
        type=duration_arg,
        default="500ms",
        help="Pause between failed attempts (default: 500ms)",
    )
    parser.add_argument(
        "--events",
        action="store_true",
        help="Print JSONL events to stderr when done",
    )
    parser.add_argument(
        "--event-log",
        type=Path,
        help="Append JSONL events to this file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (-v info, -vv debug, -vvv also asyncssh debug)",
    )
    return parser


def setup_logging(verbose: int) -> None:
    """Configure logging for the given -v count."""
    if verbose <= 0:
        level = logging.WARNING
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    # asyncssh is chatty at INFO; only surface it when explicitly asked
    logging.getLogger("asyncssh").setLevel(logging.DEBUG if verbose >= 3 else logging.WARNING)


async def run_command(args: argparse.Namespace) -> int:
    """Run the connect step (and the command, if any). Returns an exit code."""
    try:
        private_key = args.identity.read_bytes()
    except OSError as e:
        print(f"Error: cannot read identity file {args.identity}: {e}", file=sys.stderr)
        return 1

    try:
        settings = SSHSettings(username=args.login, port=args.port, timeout_sec=args.timeout)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    state = StepState(
        settings=settings,
        private_key=private_key,
        target_address=args.host,
        ui=ConsoleUi(),
    )
    policy = AttemptPolicy(dial_timeout_sec=args.dial_timeout, backoff_sec=args.backoff)
    event_collector = EventCollector() if args.events else None
    step = ConnectSSHStep(
        policy,
        event_collector=event_collector,
        event_log_path=args.event_log,
    )

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, state.cancellation.request)
    except (NotImplementedError, RuntimeError):
        # Windows event loops do not support signal handlers
        pass

    exit_code = 1
    try:
        action = await step.run(state)
        if action == StepAction.CONTINUE:
            assert state.session is not None
            if args.command:
                result = await state.session.exec(args.command)
                if result.stdout:
                    sys.stdout.write(result.stdout)
                if result.stderr:
                    sys.stderr.write(result.stderr)
                exit_code = result.exit_code
            else:
                exit_code = 0
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        exit_code = 1
    finally:
        await step.cleanup(state)
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass

        if event_collector is not None:
            for event in event_collector.events:
                print(event.to_json(), file=sys.stderr)

    return exit_code


def main() -> int:
    """CLI entry point."""
    parser = create_parser()
    args = parser.parse_args()
    setup_logging(args.verbose)

    return asyncio.run(run_command(args))


if __name__ == "__main__":
    sys.exit(main())
