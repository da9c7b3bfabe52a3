# src/terminal_fleet/services/__init__.py
"""
Provisioning engine components: fetcher, manifest resolver, provisioner,
plugin distribution and launch sequencing.
"""

from terminal_fleet.services.fetcher import ArtifactFetcher, FetchFailure, compute_file_hash
from terminal_fleet.services.manifest import Manifest, ManifestResolver, ResolveFailure
from terminal_fleet.services.provisioner import InstanceProvisioner
from terminal_fleet.services.discovery import DestinationDiscovery
from terminal_fleet.services.distributor import PluginDistributor
from terminal_fleet.services.launcher import LaunchSequencer

__all__ = [
    "ArtifactFetcher",
    "FetchFailure",
    "compute_file_hash",
    "Manifest",
    "ManifestResolver",
    "ResolveFailure",
    "InstanceProvisioner",
    "DestinationDiscovery",
    "PluginDistributor",
    "LaunchSequencer",
]
