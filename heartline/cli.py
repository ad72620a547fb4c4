"""Heartline CLI - check and watch backend availability.

Usage:
    heartline probe                     Probe the liveness endpoint once
    heartline probe --json              Print the probe result as JSON
    heartline watch                     Supervise the backend and show the banner
    heartline watch --until-available   Exit as soon as the backend answers
    heartline --version                 Show version information

Exit codes: 0 when the backend is available, 1 when it is not or an error
occurred, 130 when interrupted.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import NoReturn

from rich.console import Console, RenderableType
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from heartline import __version__
from heartline.config import HeartlineConfig, load_config
from heartline.errors import ConfigurationError, ErrorCode, HeartlineError
from heartline.reliability.models import AvailabilityState, ProbeResult
from heartline.reliability.probe import HealthProbe
from heartline.runtime import AvailabilityRuntime, build_runtime
from heartline.ui.banner import BannerController
from heartline.utils.async_utils import spawn
from heartline.utils.logging import setup_logging

console = Console()
logger = logging.getLogger(__name__)


def _format_heartline_error(error: HeartlineError) -> None:
    """Print an error with a hint for the user."""
    console.print(f"[red]Error: {error.message}[/red]")
    if isinstance(error, ConfigurationError) and error.details.get("config_path"):
        console.print(f"[yellow]Config file: {error.details['config_path']}[/yellow]")
    logger.debug("Error details: %s", error.to_dict())


def _resolve_config(args: argparse.Namespace) -> HeartlineConfig:
    config_path = None
    if args.config:
        config_path = Path(args.config).expanduser()
        if not config_path.is_file():
            raise ConfigurationError(
                f"Config file not found: {config_path}",
                code=ErrorCode.CFG_MISSING,
                config_path=str(config_path),
            )
    config = load_config(config_path)
    if args.url:
        config = config.model_copy(update={"api_base_url": args.url})
    return config


def _probe_table(url: str, result: ProbeResult) -> Table:
    table = Table(title="Backend Probe", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")

    if result.available:
        status = Text("available", style="green")
    else:
        status = Text("unavailable", style="red")
    table.add_row("URL", url)
    table.add_row("Status", status)
    if result.status_code is not None:
        table.add_row("HTTP status", str(result.status_code))
    if result.latency_ms is not None:
        table.add_row("Latency", f"{result.latency_ms:.0f} ms")
    if result.failure_kind is not None:
        table.add_row("Failure", result.failure_kind.value)
    if result.error:
        table.add_row("Error", result.error)
    return table


def cmd_probe(args: argparse.Namespace) -> int:
    """Probe the liveness endpoint once.

    Args:
        args: Parsed arguments.

    Returns:
        0 if the backend answered with 2xx, 1 otherwise.
    """
    config = _resolve_config(args)
    timeout = args.timeout or config.probe.timeout_seconds
    probe = HealthProbe(config.liveness_url, timeout=timeout)
    try:
        result = asyncio.run(probe.probe())
    finally:
        probe.close()

    if args.json:
        console.print_json(data={"url": config.liveness_url, **result.to_dict()})
    else:
        console.print(_probe_table(config.liveness_url, result))
    return 0 if result.available else 1


def _watch_view(runtime: AvailabilityRuntime, banner: BannerController) -> RenderableType:
    panel = banner.render()
    if panel is not None:
        return panel
    result = runtime.supervisor.last_result
    latency = f" ({result.latency_ms:.0f} ms)" if result and result.latency_ms is not None else ""
    return Panel(
        Text(f"Backend is available{latency}", style="green"),
        title=runtime.config.api_base_url,
        border_style="green",
    )


def _listen_for_retry(loop: asyncio.AbstractEventLoop, banner: BannerController) -> bool:
    """Let Enter on an interactive stdin trigger a manual retry."""
    if not sys.stdin.isatty():
        return False

    def on_input() -> None:
        sys.stdin.readline()
        spawn(banner.retry_now(), "Manual retry failed", logger)

    try:
        loop.add_reader(sys.stdin.fileno(), on_input)
    except (NotImplementedError, OSError, ValueError) as e:
        logger.debug("Manual retry from stdin unavailable: %s", e)
        return False
    return True


async def _watch(config: HeartlineConfig, until_available: bool) -> int:
    runtime = build_runtime(config)
    banner = runtime.banner()
    loop = asyncio.get_running_loop()
    listening = False
    refresh = config.banner.countdown_interval_seconds

    try:
        with Live(_watch_view(runtime, banner), console=console, refresh_per_second=4) as live:
            mount = spawn(banner.mount(), "Banner check failed", logger)
            listening = _listen_for_retry(loop, banner)
            while True:
                live.update(_watch_view(runtime, banner))
                if (
                    until_available
                    and mount.done()
                    and runtime.supervisor.state is AvailabilityState.AVAILABLE
                ):
                    return 0
                await asyncio.sleep(min(refresh, 0.25))
    finally:
        if listening:
            loop.remove_reader(sys.stdin.fileno())
        banner.unmount()
        runtime.close()


def cmd_watch(args: argparse.Namespace) -> int:
    """Supervise the backend and render the availability banner until interrupted."""
    config = _resolve_config(args)
    console.print(f"[dim]Watching {config.liveness_url} (Ctrl+C to stop, Enter to retry)[/dim]")
    return asyncio.run(_watch(config, args.until_available))


def cmd_version(args: argparse.Namespace) -> int:
    console.print(f"heartline {__version__}")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all subcommands.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="heartline",
        description="Heartline - backend availability detection and recovery",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  heartline probe                         Check the configured backend once
  heartline probe --url http://host/api   Check another backend
  heartline watch --until-available       Wait for the backend to come up
        """,
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="enable debug logging for troubleshooting",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="show version information and exit",
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        help="config file (default: ~/.heartline/config.json)",
    )
    parser.add_argument(
        "--log-file",
        metavar="PATH",
        help="also write logs to this file",
    )

    subparsers = parser.add_subparsers(dest="command", title="commands", metavar="<command>")

    probe_parser = subparsers.add_parser("probe", help="probe the liveness endpoint once")
    probe_parser.add_argument("--url", help="API base URL (overrides config)")
    probe_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="probe timeout in seconds",
    )
    probe_parser.add_argument("--json", action="store_true", help="print the result as JSON")
    probe_parser.set_defaults(func=cmd_probe)

    watch_parser = subparsers.add_parser(
        "watch", help="supervise the backend and show the availability banner"
    )
    watch_parser.add_argument("--url", help="API base URL (overrides config)")
    watch_parser.add_argument(
        "--until-available",
        action="store_true",
        help="exit with status 0 once the backend is available",
    )
    watch_parser.set_defaults(func=cmd_watch)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI.

    Args:
        argv: Command-line arguments. Uses sys.argv if None.

    Returns:
        Exit code.
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.version:
        return cmd_version(args)

    setup_logging(args.verbose, log_file=Path(args.log_file) if args.log_file else None)

    if args.command is None:
        parser.print_help()
        return 0

    result: int = args.func(args)
    return result


def run() -> NoReturn:
    """Entry point that handles errors and exit."""
    try:
        exit_code = main()
    except KeyboardInterrupt:
        console.print("\n[dim]Interrupted.[/dim]")
        exit_code = 130
    except HeartlineError as e:
        _format_heartline_error(e)
        logger.debug("Heartline error", exc_info=True)
        exit_code = 1
    except Exception as e:
        console.print(f"[red]Unexpected error: {e}[/red]")
        logger.exception("Unexpected error")
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    run()
