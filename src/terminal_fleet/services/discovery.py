# src/terminal_fleet/services/discovery.py
"""
Destination discovery for plugin distribution.

Destinations are never configured directly. Each call to discover() probes
the host again, because instances and user profiles come and go between runs:

- the plugin folder of every existing instance install (families x 1..total)
- every per-user profile plugin folder matching a configured glob pattern
"""

import glob
import logging
import os
from pathlib import Path
from typing import Iterable, List, Optional, Set

from terminal_fleet.config import ProfileRootConfig
from terminal_fleet.layout import InstanceLayout
from terminal_fleet.models import Destination, InstanceSlot


class DestinationDiscovery:
    """
    Args:
        layout: Instance path rules
        total_instances: Highest instance index to consider
        profile_roots: Glob patterns of profile plugin folders
        exclude: Slots whose directories must not be written to
            (e.g. slots that failed provisioning this run)
        logger: Run logger
    """

    def __init__(
        self,
        layout: InstanceLayout,
        total_instances: int,
        profile_roots: Iterable[ProfileRootConfig] = (),
        exclude: Optional[Set[InstanceSlot]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.layout = layout
        self.total_instances = total_instances
        self.profile_roots = list(profile_roots)
        self.exclude = set(exclude or ())
        self.logger = logger or logging.getLogger(__name__)

    def discover(self) -> List[Destination]:
        destinations: List[Destination] = []
        seen: Set[Path] = set()

        def add(dest: Destination):
            key = Path(os.path.normcase(os.path.abspath(dest.path)))
            if key not in seen:
                seen.add(key)
                destinations.append(dest)

        for slot in self.layout.slots(self.total_instances):
            if slot in self.exclude:
                self.logger.debug(f"Excluding {slot} from distribution")
                continue
            if not self.layout.install_path(slot).exists():
                continue
            add(Destination(self.layout.plugin_dir(slot), slot.family, "instance"))

        for root in self.profile_roots:
            pattern = os.path.expandvars(os.path.expanduser(root.pattern))
            for match in sorted(glob.glob(pattern)):
                if os.path.isdir(match):
                    add(Destination(Path(match), root.family, "profile"))

        self.logger.info(f"Discovered {len(destinations)} plugin destination(s)")
        return destinations

    __call__ = discover
