# tests/test_manifest.py
import json
from pathlib import Path

import pytest

from terminal_fleet.services.manifest import (
    ManifestResolver,
    ResolveFailure,
    parse_manifest,
)

from conftest import MANIFEST_URL

DOCUMENT = {
    "schemaVersion": 2,
    "prerequisites": {
        "vcredist": {
            "url": "https://fleet.test/vc_redist.x64.exe",
            "hash": "AA" * 32,
            "args": ["/install", "/quiet", "/norestart"],
            "detect": "C:/Windows/System32/vcruntime140.dll",
        }
    },
    "applications": {
        "mt4": {"url": "https://fleet.test/mt4setup.exe", "hash": "bb" * 32, "args": ["/auto"]},
        "mt5": {"url": "https://fleet.test/mt5setup.exe", "args": ["/auto"], "publisher": "x"},
    },
    "plugins": {
        "GridBot.ex4": {"version": "2.1", "hash": "cc" * 32, "family": "mt4"},
        "GridBot.ex5": {"version": "2.1", "hash": "dd" * 32, "url": "https://cdn.test/GridBot.ex5"},
    },
    "configBundles": {"1": {"hash": "ee" * 32, "url": "https://fleet.test/bundles/1.zip"}},
}


class TestParseManifest:
    def test_parses_every_role(self):
        manifest = parse_manifest(json.dumps(DOCUMENT), plugin_base_url="https://fleet.test/experts")

        vcredist = manifest.prerequisites["vcredist"]
        assert vcredist.install_arguments == ("/install", "/quiet", "/norestart")
        assert vcredist.detect_path == "C:/Windows/System32/vcruntime140.dll"

        assert manifest.installer_for("mt4").expected_hash == "bb" * 32
        assert manifest.installer_for("mt5").expected_hash is None
        assert manifest.installer_for("mt6") is None

        assert manifest.config_bundle_for(1).source_url == "https://fleet.test/bundles/1.zip"
        assert manifest.config_bundle_for(2) is None

    def test_plugins_keep_order_and_default_url(self):
        manifest = parse_manifest(json.dumps(DOCUMENT), plugin_base_url="https://fleet.test/experts/")
        plugins = manifest.plugin_set()

        assert [p.name for p in plugins] == ["GridBot.ex4", "GridBot.ex5"]
        assert plugins[0].source_url == "https://fleet.test/experts/GridBot.ex4"
        assert plugins[0].family == "mt4"
        assert plugins[0].version == "2.1"
        assert plugins[1].source_url == "https://cdn.test/GridBot.ex5"
        assert plugins[1].family is None

    def test_bundle_url_template(self):
        doc = {"configBundles": {"3": {"hash": "ff" * 32}}}
        manifest = parse_manifest(json.dumps(doc), bundle_url_template="https://b.test/challenge_{index}.zip")
        assert manifest.config_bundle_for(3).source_url == "https://b.test/challenge_3.zip"

    def test_unknown_fields_are_ignored(self):
        doc = dict(DOCUMENT, futureSection={"anything": True})
        manifest = parse_manifest(json.dumps(doc), plugin_base_url="https://fleet.test/experts")
        assert set(manifest.applications) == {"mt4", "mt5"}

    def test_empty_document(self):
        manifest = parse_manifest("{}")
        assert manifest.plugin_set() == []
        assert dict(manifest.applications) == {}

    def test_manifest_is_read_only(self):
        manifest = parse_manifest(json.dumps(DOCUMENT), plugin_base_url="https://fleet.test/experts")
        with pytest.raises(TypeError):
            manifest.applications["mt4"] = None

    def test_plugin_without_url_or_default_fails(self):
        with pytest.raises(ResolveFailure, match="GridBot.ex4"):
            parse_manifest(json.dumps(DOCUMENT))

    @pytest.mark.parametrize("name", ["../Bot.ex5", "sub\\Bot.ex5", "C:Bot.ex5", ".."])
    def test_plugin_name_must_be_plain_file_name(self, name):
        document = {"plugins": {name: {"url": "https://fleet.test/Bot.ex5"}}}
        with pytest.raises(ResolveFailure, match="not a plain file name"):
            parse_manifest(json.dumps(document))

    def test_invalid_json(self):
        with pytest.raises(ResolveFailure, match="not valid JSON"):
            parse_manifest("{not json")

    def test_root_must_be_object(self):
        with pytest.raises(ResolveFailure):
            parse_manifest("[1, 2]")

    def test_schema_violation(self):
        with pytest.raises(ResolveFailure, match="schema"):
            parse_manifest(json.dumps({"applications": {"mt4": {"args": "not-a-list"}}}))


class TestManifestResolver:
    def test_resolve_through_fetcher(self, fetcher, host, staging_dir: Path):
        host.add(MANIFEST_URL, json.dumps(DOCUMENT).encode())
        resolver = ManifestResolver(fetcher, staging_dir, plugin_base_url="https://fleet.test/experts")

        manifest = resolver.resolve(MANIFEST_URL)
        assert set(manifest.plugins) == {"GridBot.ex4", "GridBot.ex5"}
        assert (staging_dir / "manifest.json").exists()

    def test_resolve_retries_transient_failures(self, fetcher, host, staging_dir: Path):
        host.add(MANIFEST_URL, b"{}", fail_times=2)
        ManifestResolver(fetcher, staging_dir).resolve(MANIFEST_URL)
        assert host.count(MANIFEST_URL) == 3

    def test_unreachable_manifest_is_fatal(self, fetcher, staging_dir: Path):
        with pytest.raises(ResolveFailure, match="Could not fetch manifest"):
            ManifestResolver(fetcher, staging_dir).resolve(MANIFEST_URL)

    def test_missing_url_is_fatal(self, fetcher, staging_dir: Path):
        with pytest.raises(ResolveFailure, match="No manifest URL"):
            ManifestResolver(fetcher, staging_dir).resolve("")
