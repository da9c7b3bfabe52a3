# src/terminal_fleet/cli/main.py
"""
The `terminal-fleet` command.

Usage:
    terminal-fleet 3
    terminal-fleet --debug               # prompts for the instance count
    terminal-fleet 5 --config fleet.toml --skip-launch

Exit codes:
    0  all instances provisioned
    1  run aborted (not elevated, manifest or prerequisite failure, bad input)
    2  run completed but at least one instance failed to provision
"""

import argparse
import sys
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from terminal_fleet.config import load_settings
from terminal_fleet.errors import FleetError
from terminal_fleet.host.desktop import get_desktop_compositor
from terminal_fleet.logging_setup import close_logging, setup_logging
from terminal_fleet.orchestration.driver import OrchestrationDriver
from terminal_fleet.services.fetcher import ArtifactFetcher

EXIT_OK = 0
EXIT_ABORTED = 1
EXIT_PARTIAL = 2


def prompt_total_instances(max_instances: int, input_func=input) -> int:
    """Ask until a number within 1..max_instances is entered."""
    while True:
        raw = input_func(f"How many challenges to set up (1-{max_instances})? ").strip()
        try:
            value = int(raw)
        except ValueError:
            print(f"Not a number: {raw!r}")
            continue
        if 1 <= value <= max_instances:
            return value
        print(f"Please enter a number between 1 and {max_instances}")


def resolve_total_instances(args, settings, interactive: bool) -> Optional[int]:
    if args.total_instances is not None:
        return args.total_instances
    if settings.instances.default_total is not None:
        return settings.instances.default_total
    if interactive:
        return prompt_total_instances(settings.instances.max_instances)
    return None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="terminal-fleet",
        description="Provision, update and launch numbered trading terminal instances",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    terminal-fleet 3                  # provision and launch 3 challenges
    terminal-fleet 3 --skip-launch    # provision and update plugins only
    terminal-fleet --debug            # verbose output, prompt for count
        """,
    )
    parser.add_argument(
        "total_instances",
        nargs="?",
        type=int,
        default=None,
        help="Number of instances to provision (prompted if omitted)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Verbose output and pause before exiting",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to the TOML configuration file (default: fleet_config.toml)",
    )
    parser.add_argument(
        "--skip-plugins",
        action="store_true",
        help="Do not distribute plugins",
    )
    parser.add_argument(
        "--skip-launch",
        action="store_true",
        help="Do not launch the instances",
    )
    return parser


def _pause(interactive: bool, debug: bool):
    if debug and interactive:
        input("Press Enter to exit...")


def main(argv=None):
    """CLI entry point for terminal-fleet."""
    parser = build_parser()
    args = parser.parse_args(argv)
    interactive = sys.stdin.isatty()

    try:
        settings = load_settings(args.config)
    except (ValidationError, FileNotFoundError) as e:
        print(f"Failed to load configuration: {e}", file=sys.stderr)
        sys.exit(EXIT_ABORTED)

    logger = setup_logging(settings, debug=args.debug)
    exit_code = EXIT_ABORTED

    try:
        total = resolve_total_instances(args, settings, interactive)
        if total is None:
            raise FleetError("No instance count given and no terminal to prompt on")

        desktop_kwargs = {}
        if settings.launch.desktop_backend == "powershell":
            desktop_kwargs = {
                "powershell": settings.launch.powershell_executable,
                "logger": logger,
            }
        desktops = get_desktop_compositor(settings.launch.desktop_backend, **desktop_kwargs)

        with ArtifactFetcher.from_config(settings.fetch, logger=logger) as fetcher:
            driver = OrchestrationDriver(settings, fetcher, desktops, logger=logger)
            report = driver.run(
                total,
                distribute_plugins=not args.skip_plugins,
                launch=not args.skip_launch,
            )

        for line in report.summary():
            logger.info(line)
        exit_code = EXIT_OK if report.ok else EXIT_PARTIAL

    except FleetError as e:
        logger.error(f"Run failed: {e}")
        exit_code = EXIT_ABORTED
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        exit_code = EXIT_ABORTED
    finally:
        _pause(interactive, args.debug)
        close_logging(logger)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
