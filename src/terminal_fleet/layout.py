# src/terminal_fleet/layout.py
"""
Filesystem layout of numbered instances.

Every component that needs a path for (family, index) goes through
InstanceLayout so the naming rule lives in exactly one place:

    index 1  -> <base_path>
    index N  -> <base_path> N
"""

from pathlib import Path
from typing import Dict, Iterable, List

from terminal_fleet.config import FamilyConfig
from terminal_fleet.errors import InvalidSlotError
from terminal_fleet.models import InstanceSlot


def instance_dir_name(base_path: str, index: int) -> str:
    if index == 1:
        return base_path
    return f"{base_path} {index}"


class InstanceLayout:
    """Maps instance slots to install, executable and plugin paths."""

    def __init__(self, families: Iterable[FamilyConfig], max_instances: int):
        self.families: Dict[str, FamilyConfig] = {f.key: f for f in families}
        self.max_instances = max_instances

    @property
    def family_keys(self) -> List[str]:
        return list(self.families)

    def family(self, key: str) -> FamilyConfig:
        try:
            return self.families[key]
        except KeyError:
            raise InvalidSlotError(f"Unknown family: {key}") from None

    def validate(self, slot: InstanceSlot):
        self.family(slot.family)
        if isinstance(slot.index, bool) or not isinstance(slot.index, int):
            raise InvalidSlotError(f"Instance index must be an integer: {slot.index!r}")
        if not 1 <= slot.index <= self.max_instances:
            raise InvalidSlotError(
                f"Instance index {slot.index} outside 1..{self.max_instances}"
            )

    def install_path(self, slot: InstanceSlot) -> Path:
        self.validate(slot)
        fam = self.families[slot.family]
        return Path(instance_dir_name(fam.base_path, slot.index))

    def executable_path(self, slot: InstanceSlot) -> Path:
        return self.install_path(slot) / self.families[slot.family].executable

    def plugin_dir(self, slot: InstanceSlot) -> Path:
        return self.install_path(slot) / Path(self.families[slot.family].plugin_subpath)

    def slots(self, total_instances: int) -> List[InstanceSlot]:
        """All slots in provisioning order: ascending index, families in config order."""
        return [
            InstanceSlot(family=key, index=index)
            for index in range(1, total_instances + 1)
            for key in self.families
        ]
