# src/terminal_fleet/host/desktop.py
"""
Desktop Compositor Abstraction.

The launch sequencer isolates every instance on its own virtual desktop.
Desktop isolation itself is provided by the host; this module only wraps it
behind three operations: list, create and switch.

Implementations:
- PowerShellVirtualDesktop: Windows virtual desktops via the VirtualDesktop
  PowerShell module
- NullDesktopCompositor: in-memory bookkeeping, switching is a no-op
"""

import json
import logging
import subprocess
from abc import ABC, abstractmethod
from typing import List, Literal, Optional

DesktopBackend = Literal["powershell", "none"]


class DesktopError(Exception):
    """Raised when a desktop cannot be listed, created or switched to."""

    pass


class DesktopCompositor(ABC):
    """Abstract interface for virtual desktop operations."""

    @abstractmethod
    def list_desktops(self) -> List[str]:
        """Return the names of all existing desktops."""
        pass

    @abstractmethod
    def create_desktop(self, name: str) -> None:
        """Create a new desktop with the given name."""
        pass

    @abstractmethod
    def switch_desktop(self, name: str) -> None:
        """Make the named desktop the active one."""
        pass

    def ensure_desktop(self, name: str) -> bool:
        """
        Create the desktop if it does not exist yet.

        Returns:
            True if the desktop was created
        """
        if name in self.list_desktops():
            return False
        self.create_desktop(name)
        return True


def _ps_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class PowerShellVirtualDesktop(DesktopCompositor):
    """Windows virtual desktops through the VirtualDesktop PowerShell module."""

    COMMAND_TIMEOUT_SECONDS = 60

    def __init__(
        self,
        powershell: str = "powershell.exe",
        module: str = "VirtualDesktop",
        logger: Optional[logging.Logger] = None,
    ):
        self.powershell = powershell
        self.module = module
        self.logger = logger or logging.getLogger(__name__)

    def _run(self, script: str) -> str:
        cmd = [
            self.powershell,
            "-NoProfile",
            "-NonInteractive",
            "-ExecutionPolicy",
            "Bypass",
            "-Command",
            f"Import-Module {self.module}; {script}",
        ]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.COMMAND_TIMEOUT_SECONDS,
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            raise DesktopError(f"PowerShell call failed: {e}") from e

        if result.returncode != 0:
            raise DesktopError(
                f"PowerShell exited with code {result.returncode}: "
                f"{(result.stderr or result.stdout).strip()}"
            )
        return result.stdout

    def list_desktops(self) -> List[str]:
        output = self._run(
            "Get-DesktopList | ForEach-Object { $_.Name } | ConvertTo-Json -Compress"
        ).strip()
        if not output:
            return []
        try:
            names = json.loads(output)
        except json.JSONDecodeError as e:
            raise DesktopError(f"Unexpected desktop list output: {output!r}") from e
        # ConvertTo-Json emits a bare string for a single element
        if isinstance(names, str):
            return [names]
        return [str(n) for n in names]

    def create_desktop(self, name: str) -> None:
        self.logger.debug(f"Creating desktop {name!r}")
        self._run(f"New-Desktop | Set-DesktopName -Name {_ps_quote(name)}")

    def switch_desktop(self, name: str) -> None:
        self.logger.debug(f"Switching to desktop {name!r}")
        self._run(f"Switch-Desktop -Desktop {_ps_quote(name)}")


class NullDesktopCompositor(DesktopCompositor):
    """Records desktop names in memory; used when isolation is disabled."""

    def __init__(self):
        self.desktops: List[str] = []
        self.active: Optional[str] = None

    def list_desktops(self) -> List[str]:
        return list(self.desktops)

    def create_desktop(self, name: str) -> None:
        self.desktops.append(name)

    def switch_desktop(self, name: str) -> None:
        if name not in self.desktops:
            raise DesktopError(f"No such desktop: {name}")
        self.active = name


def get_desktop_compositor(
    backend: DesktopBackend = "powershell",
    **kwargs,
) -> DesktopCompositor:
    """
    Factory function to create the configured desktop compositor.

    Raises:
        ValueError: Unknown backend
    """
    if backend == "powershell":
        return PowerShellVirtualDesktop(**kwargs)
    elif backend == "none":
        return NullDesktopCompositor()
    else:
        raise ValueError(f"Unknown desktop backend: {backend}")
