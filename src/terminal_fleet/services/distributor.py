# src/terminal_fleet/services/distributor.py
"""
Plugin Distributor.

1. Stage every plugin once (hash-verified) into the staging directory.
2. Ask the discovery for the current destinations.
3. Copy every staged plugin into every destination.

Each (plugin, destination) pair succeeds or fails on its own; nothing is
all-or-nothing. Destinations that already hold identical content are left
untouched and reported as skipped.
"""

import logging
import shutil
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

from terminal_fleet.models import ArtifactDescriptor, DistributionReport
from terminal_fleet.services.fetcher import (
    ArtifactFetcher,
    FetchFailure,
    compute_file_hash,
    hashes_match,
)


class PluginDistributor:
    def __init__(
        self,
        fetcher: ArtifactFetcher,
        staging_dir: Path,
        compare_hashes: bool = True,
        logger: Optional[logging.Logger] = None,
    ):
        self.fetcher = fetcher
        self.staging_dir = Path(staging_dir) / "plugins"
        self.compare_hashes = compare_hashes
        self.logger = logger or logging.getLogger(__name__)

    def stage(
        self,
        plugin_set: Iterable[ArtifactDescriptor],
        report: DistributionReport,
    ) -> Dict[str, Tuple[ArtifactDescriptor, Path]]:
        """Fetch each plugin once. Failed plugins are left out of this run."""
        staged = {}
        for plugin in plugin_set:
            try:
                path = self.fetcher.fetch(
                    plugin.source_url,
                    self.staging_dir / plugin.name,
                    expected_hash=plugin.expected_hash,
                )
            except FetchFailure as e:
                self.logger.error(f"Plugin '{plugin.name}' not staged, skipping this run: {e}")
                report.failed.append((plugin.name, None, str(e)))
                continue
            staged[plugin.name] = (plugin, path)
        return staged

    def distribute(self, plugin_set: Iterable[ArtifactDescriptor], discovery) -> DistributionReport:
        """
        Bring every discovered destination to the staged plugin set.

        Args:
            plugin_set: Plugin descriptors from the manifest
            discovery: Object whose discover() returns the current destinations

        Returns:
            DistributionReport with updated / skipped / failed pairs
        """
        report = DistributionReport()
        staged = self.stage(plugin_set, report)
        if not staged:
            self.logger.warning("No plugins staged, nothing to distribute")
            return report

        destinations = discovery.discover()
        staged_hashes = {
            name: plugin.expected_hash or compute_file_hash(path)
            for name, (plugin, path) in staged.items()
        }

        for dest in destinations:
            applicable = [
                (name, path)
                for name, (plugin, path) in staged.items()
                if plugin.family is None or plugin.family == dest.family
            ]
            if not applicable:
                continue

            if not dest.path.is_dir():
                self.logger.info(f"Destination {dest.path} does not exist, skipping")
                report.skipped.extend((name, dest.path) for name, _ in applicable)
                continue

            for name, source in applicable:
                target = dest.path / name
                try:
                    if self._is_current(target, staged_hashes[name]):
                        self.logger.debug(f"{target} already current")
                        report.skipped.append((name, dest.path))
                        continue
                    shutil.copyfile(source, target)
                except OSError as e:
                    self.logger.error(f"Failed to copy {name} to {dest.path}: {e}")
                    report.failed.append((name, dest.path, str(e)))
                    continue
                self.logger.info(f"Updated {target}")
                report.updated.append((name, dest.path))

        self.logger.info(
            f"Distribution finished: {len(report.updated)} updated, "
            f"{len(report.skipped)} skipped, {len(report.failed)} failed"
        )
        return report

    def _is_current(self, target: Path, expected_hash: str) -> bool:
        if not self.compare_hashes or not target.is_file():
            return False
        return hashes_match(compute_file_hash(target), expected_hash)
