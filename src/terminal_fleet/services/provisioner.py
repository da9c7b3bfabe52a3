# src/terminal_fleet/services/provisioner.py
"""
Instance Provisioner.

Decides, per (family, index), whether an install, a clone or nothing is
required, and carries it out:

- target exists                -> ALREADY_PRESENT (no filesystem mutation)
- index == 1                   -> run the family installer silently, then
                                  require the target directory to exist
- index > 1                    -> copy the (index - 1) directory

Instances must be provisioned in ascending index order: the clone source for
index N is the directory of index N - 1.
"""

import json
import logging
import os
import shutil
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

from terminal_fleet.errors import (
    InstallerRunError,
    InstallVerificationError,
    MissingCloneSourceError,
    PrerequisiteError,
    ProvisionError,
)
from terminal_fleet.layout import InstanceLayout
from terminal_fleet.models import (
    ArtifactDescriptor,
    InstallState,
    InstanceSlot,
    ProvisionOutcome,
    ProvisionResult,
)
from terminal_fleet.services.bundles import BundleError, extract_bundle
from terminal_fleet.services.fetcher import ArtifactFetcher, FetchFailure

MARKER_FILE = ".terminal_fleet.json"
PARTIAL_SUFFIX = ".partial"

# Windows installer exit codes that still mean "installed"
# (1638: newer version already present, 3010: reboot required)
PREREQUISITE_OK_CODES = (0, 1638, 3010)
PREREQUISITE_TIMEOUT_SECONDS = 900


class InstanceProvisioner:
    """
    Brings instance slots to the "present" state.

    Args:
        layout: Path rules shared with the launch sequencer
        fetcher: Shared artifact fetcher
        staging_dir: Where installers and bundles are downloaded
        logger: Run logger
    """

    def __init__(
        self,
        layout: InstanceLayout,
        fetcher: ArtifactFetcher,
        staging_dir: Path,
        logger: Optional[logging.Logger] = None,
    ):
        self.layout = layout
        self.fetcher = fetcher
        self.staging_dir = Path(staging_dir)
        self.logger = logger or logging.getLogger(__name__)
        self._staged_installers: Dict[str, Path] = {}

    # --- State probing ---

    def state(self, slot: InstanceSlot) -> InstallState:
        """Derive the install state of a slot from the filesystem."""
        if self.layout.install_path(slot).exists():
            return InstallState.PRESENT
        if slot.index > 1:
            previous = InstanceSlot(slot.family, slot.index - 1)
            if not self.layout.install_path(previous).exists():
                return InstallState.CLONE_SOURCE_MISSING
        return InstallState.ABSENT

    # --- Provisioning ---

    def provision(
        self,
        family: str,
        index: int,
        installer: Optional[ArtifactDescriptor] = None,
    ) -> ProvisionResult:
        """
        Provision one instance slot.

        Args:
            family: Family key
            index: Instance index (1..max_instances)
            installer: Installer descriptor (required when index == 1 and absent)

        Returns:
            ProvisionResult describing what was done

        Raises:
            ProvisionError: Any fatal condition for this slot
        """
        slot = InstanceSlot(family, index)
        target = self.layout.install_path(slot)

        if target.exists():
            self.logger.info(f"[{slot}] Already present: {target}")
            return ProvisionResult(slot, ProvisionOutcome.ALREADY_PRESENT, target)

        if index == 1:
            self._install(slot, target, installer)
            return ProvisionResult(slot, ProvisionOutcome.INSTALLED, target)

        source = self.layout.install_path(InstanceSlot(family, index - 1))
        if not source.exists():
            raise MissingCloneSourceError(
                f"[{slot}] Clone source missing: {source} (provision index {index - 1} first)"
            )
        self._clone(slot, source, target)
        return ProvisionResult(slot, ProvisionOutcome.CLONED, target, source_index=index - 1)

    def _install(self, slot: InstanceSlot, target: Path, installer: Optional[ArtifactDescriptor]):
        if installer is None:
            raise ProvisionError(f"[{slot}] No installer for family '{slot.family}' in manifest")

        installer_path = self._stage_installer(slot.family, installer)
        timeout = self.layout.family(slot.family).install_timeout_seconds
        cmd = [str(installer_path), *installer.install_arguments]

        self.logger.info(f"[{slot}] Running installer: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            raise InstallerRunError(f"[{slot}] Installer timed out after {timeout}s")
        except OSError as e:
            raise InstallerRunError(f"[{slot}] Could not start installer {installer_path}: {e}") from e

        # The exit code is logged but not trusted; the directory is the proof.
        self.logger.debug(f"[{slot}] Installer exited with code {result.returncode}")
        if not target.exists():
            raise InstallVerificationError(
                f"[{slot}] Installer exited with code {result.returncode} "
                f"but {target} does not exist"
            )

        self._write_marker(target, slot, "installer", installer.expected_hash)
        self.logger.info(f"[{slot}] Installed: {target}")

    def _stage_installer(self, family: str, installer: ArtifactDescriptor) -> Path:
        """Fetch a family installer once per run."""
        staged = self._staged_installers.get(family)
        if staged and staged.exists():
            return staged
        try:
            staged = self.fetcher.fetch_artifact(installer, self.staging_dir / "installers")
        except FetchFailure as e:
            raise ProvisionError(f"Installer for '{family}' unavailable: {e}") from e
        self._staged_installers[family] = staged
        return staged

    def _clone(self, slot: InstanceSlot, source: Path, target: Path):
        """
        Copy source into target. The copy lands in a sibling ".partial"
        directory first so an interrupted clone never looks present.
        """
        partial = target.with_name(target.name + PARTIAL_SUFFIX)
        if partial.exists():
            self.logger.warning(f"[{slot}] Removing stale partial clone: {partial}")
            shutil.rmtree(partial)

        self.logger.info(f"[{slot}] Cloning {source} -> {target}")
        try:
            shutil.copytree(source, partial, dirs_exist_ok=True)
            os.replace(partial, target)
        except OSError as e:
            shutil.rmtree(partial, ignore_errors=True)
            raise ProvisionError(f"[{slot}] Clone from {source} failed: {e}") from e

        self._write_marker(target, slot, f"clone:{slot.index - 1}", None)
        self.logger.info(f"[{slot}] Cloned from index {slot.index - 1}")

    def _write_marker(self, target: Path, slot: InstanceSlot, origin: str, artifact_hash: Optional[str]):
        """Informational only; presence decisions never read it."""
        marker = {
            "family": slot.family,
            "index": slot.index,
            "origin": origin,
            "artifact_hash": artifact_hash,
            "installed_at": datetime.now().isoformat(),
        }
        try:
            (target / MARKER_FILE).write_text(json.dumps(marker, indent=2))
        except OSError as e:
            self.logger.warning(f"[{slot}] Failed to write install marker: {e}")

    # --- Shared prerequisites ---

    def install_prerequisites(self, prerequisites: Iterable[ArtifactDescriptor]) -> List[str]:
        """
        Fetch and silently run each prerequisite installer.

        Prerequisites whose detect path already exists are skipped.

        Returns:
            Names of the prerequisites that were run

        Raises:
            PrerequisiteError: On the first failure (fatal for the run)
        """
        installed = []
        for prereq in prerequisites:
            if prereq.detect_path and Path(os.path.expandvars(prereq.detect_path)).exists():
                self.logger.info(f"Prerequisite '{prereq.name}' already present, skipping")
                continue

            try:
                path = self.fetcher.fetch_artifact(prereq, self.staging_dir / "prerequisites")
            except FetchFailure as e:
                raise PrerequisiteError(f"Prerequisite '{prereq.name}' unavailable: {e}") from e

            cmd = [str(path), *prereq.install_arguments]
            self.logger.info(f"Installing prerequisite '{prereq.name}': {' '.join(cmd)}")
            try:
                result = subprocess.run(
                    cmd,
                    capture_output=True,
                    text=True,
                    timeout=PREREQUISITE_TIMEOUT_SECONDS,
                )
            except (subprocess.TimeoutExpired, OSError) as e:
                raise PrerequisiteError(f"Prerequisite '{prereq.name}' failed to run: {e}") from e

            if result.returncode not in PREREQUISITE_OK_CODES:
                raise PrerequisiteError(
                    f"Prerequisite '{prereq.name}' exited with code {result.returncode}: "
                    f"{result.stderr or result.stdout}"
                )
            installed.append(prereq.name)
        return installed

    # --- Config bundles ---

    def apply_config_bundle(
        self,
        index: int,
        bundle: ArtifactDescriptor,
        exclude: Optional[Set[InstanceSlot]] = None,
    ) -> List[Path]:
        """
        Fetch a per-instance config bundle and extract it into every existing
        family install directory of that index.

        Slots in `exclude` (e.g. failed this run) are left untouched. A failure
        for one family does not stop extraction into the others.

        Raises:
            ProvisionError: Fetch or extraction failure (local to this index)
        """
        exclude = exclude or set()
        try:
            archive = self.fetcher.fetch_artifact(bundle, self.staging_dir / "bundles")
        except FetchFailure as e:
            raise ProvisionError(f"Config bundle for instance {index} unavailable: {e}") from e

        targets = []
        errors = []
        for family in self.layout.family_keys:
            slot = InstanceSlot(family, index)
            if slot in exclude:
                self.logger.warning(f"Config bundle {index}: {slot} failed provisioning, skipping")
                continue
            target = self.layout.install_path(slot)
            if not target.exists():
                self.logger.warning(f"Config bundle {index}: {target} missing, skipping")
                continue
            try:
                extract_bundle(archive, target, logger=self.logger)
            except BundleError as e:
                self.logger.error(f"[{slot}] Config bundle failed: {e}")
                errors.append(f"{family}: {e}")
                continue
            targets.append(target)

        if errors:
            raise ProvisionError(f"Config bundle for instance {index}: {'; '.join(errors)}")
        return targets
