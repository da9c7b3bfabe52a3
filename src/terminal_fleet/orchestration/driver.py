# src/terminal_fleet/orchestration/driver.py
"""
Orchestration Driver.

One provisioning run, strictly sequential:

1. elevation check             (fatal)
2. resolve manifest            (fatal)
3. install prerequisites       (fatal)
4. provision every family for index 1..N, ascending
                               (per-slot failures are logged, the run goes on)
5. apply per-instance config bundles
6. distribute plugins          (best effort)
7. launch instances            (best effort)
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from terminal_fleet.config import AppSettings
from terminal_fleet.errors import (
    InvalidSlotError,
    NotElevatedError,
    PrerequisiteError,
    ProvisionError,
    RunAborted,
)
from terminal_fleet.host.desktop import DesktopCompositor
from terminal_fleet.host.elevation import is_elevated as host_is_elevated
from terminal_fleet.layout import InstanceLayout
from terminal_fleet.models import (
    DistributionReport,
    InstanceLaunchReport,
    InstanceSlot,
    ProvisionResult,
)
from terminal_fleet.services.discovery import DestinationDiscovery
from terminal_fleet.services.distributor import PluginDistributor
from terminal_fleet.services.fetcher import ArtifactFetcher
from terminal_fleet.services.launcher import LaunchSequencer
from terminal_fleet.services.manifest import Manifest, ManifestResolver, ResolveFailure
from terminal_fleet.services.provisioner import InstanceProvisioner


@dataclass
class RunReport:
    total_instances: int
    prerequisites: List[str] = field(default_factory=list)
    provisioned: List[ProvisionResult] = field(default_factory=list)
    provision_failures: Dict[InstanceSlot, str] = field(default_factory=dict)
    bundle_failures: Dict[int, str] = field(default_factory=dict)
    distribution: Optional[DistributionReport] = None
    launches: List[InstanceLaunchReport] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True when every slot was provisioned and every bundle applied."""
        return not self.provision_failures and not self.bundle_failures

    def summary(self) -> List[str]:
        lines = [f"Instances requested: {self.total_instances}"]
        for result in self.provisioned:
            lines.append(f"  {result.slot}: {result.outcome.value} ({result.path})")
        for slot, reason in self.provision_failures.items():
            lines.append(f"  {slot}: FAILED - {reason}")
        for index, reason in self.bundle_failures.items():
            lines.append(f"  config bundle {index}: FAILED - {reason}")
        if self.distribution is not None:
            lines.append(
                f"Plugins: {len(self.distribution.updated)} updated, "
                f"{len(self.distribution.skipped)} skipped, "
                f"{len(self.distribution.failed)} failed"
            )
        for launch in self.launches:
            lines.append(
                f"Launch {launch.index} [{launch.desktop}]: {launch.state.value}, "
                f"started={sorted(launch.started)}, missing={launch.missing}"
            )
        return lines


class OrchestrationDriver:
    """
    Wires the components together for one run.

    Args:
        settings: Application settings
        fetcher: Shared artifact fetcher
        desktops: Virtual desktop capability
        is_elevated: Administrator-rights check
        sleep: Sleep function used for settle delays
        logger: Run logger, handed to every component
    """

    def __init__(
        self,
        settings: AppSettings,
        fetcher: ArtifactFetcher,
        desktops: DesktopCompositor,
        is_elevated: Callable[[], bool] = host_is_elevated,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        self.settings = settings
        self.is_elevated = is_elevated
        self.logger = logger or logging.getLogger(__name__)

        staging_dir = Path(settings.fetch.staging_dir)
        self.layout = InstanceLayout(settings.families, settings.instances.max_instances)
        self.resolver = ManifestResolver(
            fetcher,
            staging_dir,
            plugin_base_url=settings.manifest.plugin_base_url,
            bundle_url_template=settings.manifest.config_bundle_url_template,
            logger=self.logger,
        )
        self.provisioner = InstanceProvisioner(self.layout, fetcher, staging_dir, logger=self.logger)
        self.distributor = PluginDistributor(fetcher, staging_dir, logger=self.logger)
        self.sequencer = LaunchSequencer(
            self.layout,
            desktops,
            settle_seconds=settings.launch.settle_seconds,
            portable_flag=settings.launch.portable_flag,
            desktop_name_template=settings.launch.desktop_name_template,
            sleep=sleep,
            logger=self.logger,
        )

    def run(
        self,
        total_instances: int,
        distribute_plugins: bool = True,
        launch: bool = True,
    ) -> RunReport:
        """
        Execute a full provisioning run.

        Raises:
            NotElevatedError: Run without administrator rights
            InvalidSlotError: total_instances outside 1..max_instances
            RunAborted: Manifest or prerequisite failure
        """
        if not self.is_elevated():
            raise NotElevatedError("Administrator rights are required; re-run elevated")

        max_instances = self.layout.max_instances
        if not 1 <= total_instances <= max_instances:
            raise InvalidSlotError(f"total_instances must be within 1..{max_instances}, got {total_instances}")

        report = RunReport(total_instances=total_instances)
        self.logger.info(f"Starting provisioning run for {total_instances} instance(s)")

        try:
            manifest = self.resolver.resolve(self.settings.manifest.url)
        except ResolveFailure as e:
            self.logger.error(f"Manifest resolution failed, aborting run: {e}")
            raise RunAborted(f"Manifest resolution failed: {e}") from e

        try:
            report.prerequisites = self.provisioner.install_prerequisites(
                manifest.prerequisites.values()
            )
        except PrerequisiteError as e:
            self.logger.error(f"Prerequisite installation failed, aborting run: {e}")
            raise RunAborted(str(e)) from e

        self.provision_all(manifest, total_instances, report)
        self.apply_config_bundles(manifest, total_instances, report)

        if distribute_plugins:
            discovery = DestinationDiscovery(
                self.layout,
                total_instances,
                profile_roots=self.settings.profiles,
                exclude=set(report.provision_failures),
                logger=self.logger,
            )
            report.distribution = self.distributor.distribute(manifest.plugin_set(), discovery)

        if launch:
            report.launches = self.sequencer.launch_all(total_instances)

        self.logger.info("Provisioning run finished")
        return report

    def provision_all(self, manifest: Manifest, total_instances: int, report: RunReport):
        """
        Provision every family for ascending indices. A failed slot marks its
        family broken: higher indices of that family are not attempted since
        they would clone from an incomplete source.
        """
        broken: Dict[str, int] = {}
        for slot in self.layout.slots(total_instances):
            if slot.family in broken:
                reason = f"skipped, {slot.family} index {broken[slot.family]} failed"
                self.logger.warning(f"[{slot}] {reason}")
                report.provision_failures[slot] = reason
                continue
            try:
                result = self.provisioner.provision(
                    slot.family, slot.index, manifest.installer_for(slot.family)
                )
            except ProvisionError as e:
                self.logger.error(f"[{slot}] Provisioning failed: {e}")
                report.provision_failures[slot] = str(e)
                broken[slot.family] = slot.index
                continue
            report.provisioned.append(result)

    def apply_config_bundles(self, manifest: Manifest, total_instances: int, report: RunReport):
        failed = set(report.provision_failures)
        for index in range(1, total_instances + 1):
            bundle = manifest.config_bundle_for(index)
            if bundle is None:
                continue
            try:
                self.provisioner.apply_config_bundle(index, bundle, exclude=failed)
            except ProvisionError as e:
                self.logger.error(f"Config bundle for instance {index} failed: {e}")
                report.bundle_failures[index] = str(e)
