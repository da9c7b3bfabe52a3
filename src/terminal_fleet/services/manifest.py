# src/terminal_fleet/services/manifest.py
"""
Manifest Resolver.

The manifest is a JSON document naming every artifact of a run:

    {
      "prerequisites": {"<name>": {"url": ..., "hash": ..., "args": [...], "detect": ...}},
      "applications":  {"<family>": {"url": ..., "hash": ..., "args": [...]}},
      "plugins":       {"<file name>": {"version": ..., "hash": ..., "url": ..., "family": ...}},
      "configBundles": {"<index>": {"hash": ..., "url": ...}}
    }

Unknown fields are ignored. The resolved Manifest is a read-only snapshot
for the duration of one run.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path, PureWindowsPath
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from terminal_fleet.models import ArtifactDescriptor
from terminal_fleet.services.fetcher import ArtifactFetcher, FetchFailure


class ResolveFailure(Exception):
    """Raised when the manifest cannot be fetched or parsed. Always fatal."""

    pass


# --- Wire models ---


class _Entry(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    url: Optional[str] = None
    hash: Optional[str] = None
    args: List[str] = Field(default_factory=list)


class PrerequisiteEntry(_Entry):
    detect: Optional[str] = None


class ApplicationEntry(_Entry):
    pass


class PluginEntry(_Entry):
    version: Optional[str] = None
    family: Optional[str] = None


class ConfigBundleEntry(_Entry):
    pass


class ManifestDocument(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    prerequisites: Dict[str, PrerequisiteEntry] = Field(default_factory=dict)
    applications: Dict[str, ApplicationEntry] = Field(default_factory=dict)
    plugins: Dict[str, PluginEntry] = Field(default_factory=dict)
    config_bundles: Dict[int, ConfigBundleEntry] = Field(
        default_factory=dict, alias="configBundles"
    )


# --- Resolved snapshot ---


@dataclass(frozen=True)
class Manifest:
    """Artifact role -> descriptor mapping resolved for one run."""

    prerequisites: Mapping[str, ArtifactDescriptor] = field(default_factory=dict)
    applications: Mapping[str, ArtifactDescriptor] = field(default_factory=dict)
    plugins: Mapping[str, ArtifactDescriptor] = field(default_factory=dict)
    config_bundles: Mapping[int, ArtifactDescriptor] = field(default_factory=dict)

    def installer_for(self, family: str) -> Optional[ArtifactDescriptor]:
        return self.applications.get(family)

    def plugin_set(self) -> List[ArtifactDescriptor]:
        """Plugins in manifest order."""
        return list(self.plugins.values())

    def config_bundle_for(self, index: int) -> Optional[ArtifactDescriptor]:
        return self.config_bundles.get(index)


def _descriptor(name: str, entry: _Entry, url: Optional[str], **extra) -> ArtifactDescriptor:
    if not url:
        raise ResolveFailure(f"Manifest entry '{name}' has no url and no default applies")
    return ArtifactDescriptor(
        name=name,
        source_url=url,
        expected_hash=entry.hash or None,
        install_arguments=tuple(entry.args),
        **extra,
    )


def _check_plugin_name(name: str):
    """Plugin names become file names in every destination folder."""
    if name in ("", ".", "..") or PureWindowsPath(name).name != name:
        raise ResolveFailure(f"Plugin name '{name}' is not a plain file name")


def build_manifest(
    document: ManifestDocument,
    plugin_base_url: str = "",
    bundle_url_template: str = "",
) -> Manifest:
    """Turn the wire document into descriptors, filling default URLs."""
    prerequisites = {
        name: _descriptor(name, entry, entry.url, detect_path=entry.detect)
        for name, entry in document.prerequisites.items()
    }
    applications = {
        name: _descriptor(name, entry, entry.url)
        for name, entry in document.applications.items()
    }

    plugins = {}
    for name, entry in document.plugins.items():
        _check_plugin_name(name)
        url = entry.url
        if not url and plugin_base_url:
            url = f"{plugin_base_url.rstrip('/')}/{name}"
        plugins[name] = _descriptor(
            name, entry, url, version=entry.version, family=entry.family
        )

    bundles = {}
    for index, entry in document.config_bundles.items():
        url = entry.url
        if not url and bundle_url_template:
            url = bundle_url_template.format(index=index)
        bundles[index] = _descriptor(f"challenge_{index}", entry, url)

    return Manifest(
        prerequisites=MappingProxyType(prerequisites),
        applications=MappingProxyType(applications),
        plugins=MappingProxyType(plugins),
        config_bundles=MappingProxyType(bundles),
    )


def parse_manifest(raw: Union[str, bytes], **defaults) -> Manifest:
    """Parse manifest JSON text into a Manifest."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ResolveFailure(f"Manifest is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ResolveFailure("Manifest root must be a JSON object")
    try:
        document = ManifestDocument.model_validate(data)
    except ValidationError as e:
        raise ResolveFailure(f"Manifest does not match the expected schema: {e}") from e
    return build_manifest(document, **defaults)


class ManifestResolver:
    """Fetches the manifest (through the shared fetcher) and parses it."""

    MANIFEST_FILE = "manifest.json"

    def __init__(
        self,
        fetcher: ArtifactFetcher,
        staging_dir: Path,
        plugin_base_url: str = "",
        bundle_url_template: str = "",
        logger: Optional[logging.Logger] = None,
    ):
        self.fetcher = fetcher
        self.staging_dir = Path(staging_dir)
        self.plugin_base_url = plugin_base_url
        self.bundle_url_template = bundle_url_template
        self.logger = logger or logging.getLogger(__name__)

    def resolve(self, manifest_url: str) -> Manifest:
        """
        Fetch and parse the manifest.

        Raises:
            ResolveFailure: On any fetch or parse error
        """
        if not manifest_url:
            raise ResolveFailure("No manifest URL configured")

        self.logger.info(f"Resolving manifest: {manifest_url}")
        destination = self.staging_dir / self.MANIFEST_FILE
        try:
            self.fetcher.fetch(manifest_url, destination)
        except FetchFailure as e:
            raise ResolveFailure(f"Could not fetch manifest {manifest_url}: {e}") from e

        manifest = parse_manifest(
            destination.read_bytes(),
            plugin_base_url=self.plugin_base_url,
            bundle_url_template=self.bundle_url_template,
        )
        self.logger.info(
            f"Manifest resolved: {len(manifest.prerequisites)} prerequisite(s), "
            f"{len(manifest.applications)} application(s), "
            f"{len(manifest.plugins)} plugin(s), "
            f"{len(manifest.config_bundles)} config bundle(s)"
        )
        return manifest
