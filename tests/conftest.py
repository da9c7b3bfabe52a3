"""
Pytest fixtures and configuration for Terminal Fleet tests.

Nothing here touches the network, the real desktop or real installers:
HTTP goes through httpx.MockTransport, sleeps are recorded, and desktops are
in-memory fakes.
"""
import hashlib
import subprocess
from pathlib import Path
from typing import Dict, List

import httpx
import pytest

from terminal_fleet.config import load_settings, reset_settings
from terminal_fleet.host.desktop import DesktopCompositor, DesktopError
from terminal_fleet.layout import InstanceLayout
from terminal_fleet.models import InstanceSlot
from terminal_fleet.services.fetcher import ArtifactFetcher

MANIFEST_URL = "https://fleet.test/manifest.json"


def sha256(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


class FakeHost:
    """Serves fixed content per URL; can fail a URL a number of times first."""

    def __init__(self):
        self.routes: Dict[str, bytes] = {}
        self.sequences: Dict[str, List[bytes]] = {}
        self.failures: Dict[str, int] = {}
        self.requests: List[str] = []

    def add(self, url: str, content: bytes, fail_times: int = 0):
        self.routes[url] = content
        self.failures[url] = fail_times

    def add_sequence(self, url: str, contents: List[bytes]):
        """Serve each content once, repeating the last one."""
        self.sequences[url] = list(contents)

    def count(self, url: str) -> int:
        return self.requests.count(url)

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        if self.failures.get(url, 0) > 0:
            self.failures[url] -= 1
            return httpx.Response(503)
        if url in self.sequences:
            contents = self.sequences[url]
            content = contents.pop(0) if len(contents) > 1 else contents[0]
            return httpx.Response(200, content=content)
        if url in self.routes:
            return httpx.Response(200, content=self.routes[url])
        return httpx.Response(404)


class SleepRecorder:
    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float):
        self.calls.append(seconds)


class FakeDesktops(DesktopCompositor):
    """Records every desktop operation; names in `broken` fail to create."""

    def __init__(self, existing=(), broken=()):
        self.desktops: List[str] = list(existing)
        self.broken = set(broken)
        self.created: List[str] = []
        self.switches: List[str] = []

    def list_desktops(self) -> List[str]:
        return list(self.desktops)

    def create_desktop(self, name: str) -> None:
        if name in self.broken:
            raise DesktopError(f"cannot create {name}")
        self.desktops.append(name)
        self.created.append(name)

    def switch_desktop(self, name: str) -> None:
        if name not in self.desktops:
            raise DesktopError(f"no desktop {name}")
        self.switches.append(name)


@pytest.fixture(autouse=True)
def _reset_settings():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def program_files(tmp_path: Path) -> Path:
    root = tmp_path / "Program Files"
    root.mkdir()
    return root


@pytest.fixture
def settings(tmp_path: Path, program_files: Path):
    """Settings pointing every path into tmp_path."""
    config_file = tmp_path / "empty_config.toml"
    config_file.write_text("", encoding="utf-8")
    return load_settings(
        config_file,
        logging={"log_file": str(tmp_path / "logs" / "fleet.log"), "console": False},
        fetch={"staging_dir": str(tmp_path / "staging"), "base_delay_seconds": 1.0},
        manifest={
            "url": MANIFEST_URL,
            "plugin_base_url": "https://fleet.test/experts",
        },
        instances={"max_instances": 5},
        launch={"settle_seconds": 30, "desktop_backend": "none"},
        families=[
            {
                "key": "mt4",
                "display_name": "MetaTrader 4",
                "base_path": str(program_files / "MetaTrader 4"),
                "executable": "terminal.exe",
                "plugin_subpath": "MQL4/Experts",
            },
            {
                "key": "mt5",
                "display_name": "MetaTrader 5",
                "base_path": str(program_files / "MetaTrader 5"),
                "executable": "terminal64.exe",
                "plugin_subpath": "MQL5/Experts",
            },
        ],
        profiles=[
            {"family": "mt4", "pattern": str(tmp_path / "AppData" / "Terminal" / "*" / "MQL4" / "Experts")},
            {"family": "mt5", "pattern": str(tmp_path / "AppData" / "Terminal" / "*" / "MQL5" / "Experts")},
        ],
    )


@pytest.fixture
def layout(settings) -> InstanceLayout:
    return InstanceLayout(settings.families, settings.instances.max_instances)


@pytest.fixture
def staging_dir(settings) -> Path:
    return Path(settings.fetch.staging_dir)


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def fetcher(host: FakeHost, sleeps: SleepRecorder):
    client = httpx.Client(transport=httpx.MockTransport(host.handler))
    fetcher = ArtifactFetcher(client=client, max_retries=3, base_delay=1.0, sleep=sleeps)
    yield fetcher
    client.close()


def make_fake_installer(layout: InstanceLayout, returncode: int = 0, create: bool = True):
    """
    subprocess.run replacement: an installer staged as '<family>.exe' creates
    the family's index-1 directory with its executable.
    """
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append(list(cmd))
        family = Path(cmd[0]).stem
        if create and family in layout.families:
            exe = layout.executable_path(InstanceSlot(family, 1))
            exe.parent.mkdir(parents=True, exist_ok=True)
            exe.write_bytes(b"MZ terminal")
            layout.plugin_dir(InstanceSlot(family, 1)).mkdir(parents=True, exist_ok=True)
        return subprocess.CompletedProcess(cmd, returncode, "", "")

    fake_run.calls = calls
    return fake_run
