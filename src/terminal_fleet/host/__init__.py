# src/terminal_fleet/host/__init__.py
"""
Host capabilities used by the provisioning engine: virtual desktops and the
administrator-rights check.
"""

from terminal_fleet.host.desktop import (
    DesktopCompositor,
    DesktopError,
    NullDesktopCompositor,
    PowerShellVirtualDesktop,
    get_desktop_compositor,
)
from terminal_fleet.host.elevation import is_elevated

__all__ = [
    "DesktopCompositor",
    "DesktopError",
    "NullDesktopCompositor",
    "PowerShellVirtualDesktop",
    "get_desktop_compositor",
    "is_elevated",
]
