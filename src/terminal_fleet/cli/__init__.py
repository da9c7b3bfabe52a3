# src/terminal_fleet/cli/__init__.py
"""
Terminal Fleet CLI commands.
"""

from terminal_fleet.cli.main import main, build_parser

__all__ = ["main", "build_parser"]
