# src/terminal_fleet/services/launcher.py
"""
Launch Sequencer.

Starts instances one index at a time, each on its own virtual desktop:

    PENDING_DESKTOP -> DESKTOP_READY -> PROCESSES_STARTED -> SETTLED

After every index the sequencer waits a fixed settle interval before moving
on, so terminals never cold-start together.
"""

import logging
import subprocess
import time
from typing import Callable, Iterable, List, Optional

from terminal_fleet.errors import InvalidSlotError
from terminal_fleet.host.desktop import DesktopCompositor, DesktopError
from terminal_fleet.layout import InstanceLayout
from terminal_fleet.models import InstanceLaunchReport, InstanceSlot, LaunchState

# Detach launched terminals from our console on Windows
SPAWN_FLAGS = getattr(subprocess, "DETACHED_PROCESS", 0) | getattr(
    subprocess, "CREATE_NEW_PROCESS_GROUP", 0
)


class LaunchSequencer:
    def __init__(
        self,
        layout: InstanceLayout,
        desktops: DesktopCompositor,
        settle_seconds: float = 30.0,
        portable_flag: str = "/portable",
        desktop_name_template: str = "Challenge {index}",
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        self.layout = layout
        self.desktops = desktops
        self.settle_seconds = settle_seconds
        self.portable_flag = portable_flag
        self.desktop_name_template = desktop_name_template
        self.sleep = sleep
        self.logger = logger or logging.getLogger(__name__)

    def desktop_name(self, index: int) -> str:
        return self.desktop_name_template.format(index=index)

    def launch_all(
        self,
        total_instances: int,
        families: Optional[Iterable[str]] = None,
    ) -> List[InstanceLaunchReport]:
        """
        Launch instances 1..total_instances in order.

        Returns:
            One report per index
        """
        if not 1 <= total_instances <= self.layout.max_instances:
            raise InvalidSlotError(
                f"Cannot launch {total_instances} instances (max {self.layout.max_instances})"
            )
        family_keys = list(families) if families is not None else self.layout.family_keys

        reports = []
        for index in range(1, total_instances + 1):
            report = self.launch_instance(index, family_keys)
            # A skipped instance still consumes its slot in the pacing
            self.logger.info(f"Instance {index}: waiting {self.settle_seconds:g}s before the next instance")
            self.sleep(self.settle_seconds)
            if report.state == LaunchState.PROCESSES_STARTED:
                report.state = LaunchState.SETTLED
            reports.append(report)
        return reports

    def launch_instance(self, index: int, families: Iterable[str]) -> InstanceLaunchReport:
        """Prepare the desktop and start every family's terminal for one index."""
        report = InstanceLaunchReport(index=index, desktop=self.desktop_name(index))

        # PENDING_DESKTOP -> DESKTOP_READY
        try:
            if self.desktops.ensure_desktop(report.desktop):
                self.logger.info(f"Instance {index}: created desktop '{report.desktop}'")
            self.desktops.switch_desktop(report.desktop)
        except DesktopError as e:
            report.desktop_error = str(e)
            self.logger.error(f"Instance {index}: desktop '{report.desktop}' unavailable, skipping launch: {e}")
            return report
        report.state = LaunchState.DESKTOP_READY

        # DESKTOP_READY -> PROCESSES_STARTED
        for family in families:
            exe = self.layout.executable_path(InstanceSlot(family, index))
            if not exe.is_file():
                self.logger.warning(f"Instance {index}: {family} executable not found: {exe}")
                report.missing.append(family)
                continue
            try:
                proc = subprocess.Popen(
                    [str(exe), self.portable_flag],
                    cwd=str(exe.parent),
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                    creationflags=SPAWN_FLAGS,
                )
            except OSError as e:
                self.logger.error(f"Instance {index}: failed to start {exe}: {e}")
                report.errors[family] = str(e)
                continue
            report.started[family] = proc.pid
            self.logger.info(f"Instance {index}: started {family} (pid {proc.pid})")

        report.state = LaunchState.PROCESSES_STARTED
        return report
