# src/terminal_fleet/models.py
"""
Core data structures shared by the provisioning engine.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True)
class ArtifactDescriptor:
    """A fetchable, verifiable unit resolved from the manifest."""

    name: str
    source_url: str
    expected_hash: Optional[str] = None
    install_arguments: Tuple[str, ...] = ()
    version: Optional[str] = None
    family: Optional[str] = None  # Plugins only: restrict to one family's destinations
    detect_path: Optional[str] = None  # Prerequisites only: skip when this path exists


@dataclass(frozen=True)
class InstanceSlot:
    """One numbered installation of one application family."""

    family: str
    index: int

    def __str__(self) -> str:
        return f"{self.family}#{self.index}"


class InstallState(Enum):
    """Derived from the filesystem on every run, never stored."""

    ABSENT = "absent"
    PRESENT = "present"
    CLONE_SOURCE_MISSING = "clone_source_missing"


class ProvisionOutcome(Enum):
    INSTALLED = "installed"
    ALREADY_PRESENT = "already_present"
    CLONED = "cloned"


@dataclass
class ProvisionResult:
    slot: InstanceSlot
    outcome: ProvisionOutcome
    path: Path
    source_index: Optional[int] = None  # Set for CLONED


@dataclass(frozen=True)
class Destination:
    """A discovered directory that should hold the current plugin set."""

    path: Path
    family: str
    kind: str  # "instance" or "profile"


@dataclass
class DistributionReport:
    """Outcome of one distribution pass. Entries are (plugin, destination path)."""

    updated: List[Tuple[str, Path]] = field(default_factory=list)
    skipped: List[Tuple[str, Path]] = field(default_factory=list)
    failed: List[Tuple[str, Optional[Path], str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class LaunchState(Enum):
    """Per-instance launch state machine."""

    PENDING_DESKTOP = "pending_desktop"
    DESKTOP_READY = "desktop_ready"
    PROCESSES_STARTED = "processes_started"
    SETTLED = "settled"


@dataclass
class InstanceLaunchReport:
    index: int
    desktop: str
    state: LaunchState = LaunchState.PENDING_DESKTOP
    desktop_error: Optional[str] = None
    started: Dict[str, int] = field(default_factory=dict)  # family -> pid
    missing: List[str] = field(default_factory=list)  # families without an executable
    errors: Dict[str, str] = field(default_factory=dict)  # family -> spawn error
