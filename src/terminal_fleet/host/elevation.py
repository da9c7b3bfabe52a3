# src/terminal_fleet/host/elevation.py
"""Administrator-rights check, injected into the orchestration driver."""

import ctypes
import os


def is_elevated() -> bool:
    """True when the current process runs with administrator rights."""
    if os.name == "nt":
        try:
            return bool(ctypes.windll.shell32.IsUserAnAdmin())
        except (AttributeError, OSError):
            return False
    return os.geteuid() == 0
