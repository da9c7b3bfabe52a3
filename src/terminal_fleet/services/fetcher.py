# src/terminal_fleet/services/fetcher.py
"""
Artifact Fetcher.

Downloads a remote resource to a local path with linear backoff between
attempts, and optionally verifies the SHA-256 content hash of the result.

- Every attempt truncates the destination (never appends).
- A hash mismatch deletes the file and counts as a failed attempt.
- Exhausting the attempts raises FetchFailure; the caller decides whether
  that is fatal or skippable.
"""

import hashlib
import logging
import shutil
import time
from pathlib import Path
from typing import Callable, Optional, Union
from urllib.parse import urlparse
from urllib.request import url2pathname

import httpx

from terminal_fleet.models import ArtifactDescriptor


CHUNK_SIZE = 65536


class FetchFailure(Exception):
    """Raised when a fetch exhausts its attempts."""

    def __init__(self, url: str, attempts: int, cause: Optional[BaseException] = None):
        self.url = url
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"Failed to fetch {url} after {attempts} attempt(s): {cause}")


class HashMismatchError(Exception):
    """Downloaded content does not match the expected hash."""

    def __init__(self, path: Path, expected: str, actual: str):
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(f"Hash mismatch for {path.name}: expected {expected}, got {actual}")


def compute_file_hash(path: Union[str, Path]) -> str:
    """SHA-256 hex digest of a file, read in chunks."""
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        while chunk := f.read(CHUNK_SIZE):
            hasher.update(chunk)
    return hasher.hexdigest()


def hashes_match(actual: str, expected: str) -> bool:
    return actual.strip().lower() == expected.strip().lower()


def staging_path(descriptor: ArtifactDescriptor, staging_dir: Path) -> Path:
    """Local file a descriptor is staged to, keyed by artifact name."""
    name = descriptor.name
    if not Path(name).suffix:
        url_name = Path(urlparse(descriptor.source_url).path).name
        if Path(url_name).suffix:
            name = f"{name}{Path(url_name).suffix}"
    safe = "".join(c if c.isalnum() or c in "._- " else "_" for c in name)
    return staging_dir / safe


class ArtifactFetcher:
    """
    Retry-with-backoff downloader shared by every component.

    Args:
        client: httpx client to use (one is created if not provided)
        max_retries: Default number of attempts per fetch
        base_delay: Backoff unit; the delay after attempt N is base_delay * N
        timeout: Per-request timeout in seconds (only for an owned client)
        sleep: Sleep function (injected for tests)
        logger: Run logger
    """

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        max_retries: int = 3,
        base_delay: float = 5.0,
        timeout: float = 120.0,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=timeout, follow_redirects=True)
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.sleep = sleep
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_config(cls, fetch_config, logger: Optional[logging.Logger] = None, **kwargs):
        return cls(
            max_retries=fetch_config.max_retries,
            base_delay=fetch_config.base_delay_seconds,
            timeout=fetch_config.timeout_seconds,
            logger=logger,
            **kwargs,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def close(self):
        if self._owns_client:
            self.client.close()

    def fetch(
        self,
        url: str,
        destination: Union[str, Path],
        expected_hash: Optional[str] = None,
        max_retries: Optional[int] = None,
    ) -> Path:
        """
        Download `url` to `destination`.

        Returns:
            The destination path

        Raises:
            FetchFailure: If every attempt failed
            ValueError: max_retries below 1
        """
        destination = Path(destination)
        attempts_allowed = self.max_retries if max_retries is None else max_retries
        if attempts_allowed < 1:
            raise ValueError("max_retries must be at least 1")
        destination.parent.mkdir(parents=True, exist_ok=True)

        last_error: Optional[BaseException] = None
        for attempt in range(1, attempts_allowed + 1):
            try:
                self.logger.debug(f"Fetching {url} -> {destination} (attempt {attempt}/{attempts_allowed})")
                self._transfer(url, destination)
                if expected_hash:
                    actual = compute_file_hash(destination)
                    if not hashes_match(actual, expected_hash):
                        raise HashMismatchError(destination, expected_hash, actual)
                self.logger.info(f"Fetched {url} -> {destination}")
                return destination
            except (httpx.HTTPError, OSError, HashMismatchError) as e:
                last_error = e
                self.logger.warning(f"Fetch attempt {attempt}/{attempts_allowed} failed for {url}: {e}")
                destination.unlink(missing_ok=True)
                if attempt < attempts_allowed:
                    self.sleep(self.base_delay * attempt)

        self.logger.error(f"Giving up on {url} after {attempts_allowed} attempt(s)")
        raise FetchFailure(url, attempts_allowed, last_error)

    def fetch_artifact(
        self,
        descriptor: ArtifactDescriptor,
        staging_dir: Union[str, Path],
        max_retries: Optional[int] = None,
    ) -> Path:
        """Fetch a manifest artifact into the staging directory."""
        destination = staging_path(descriptor, Path(staging_dir))
        return self.fetch(
            descriptor.source_url,
            destination,
            expected_hash=descriptor.expected_hash,
            max_retries=max_retries,
        )

    def _transfer(self, url: str, destination: Path):
        """One transfer attempt; overwrites destination."""
        parsed = urlparse(url)
        if parsed.scheme == "file":
            shutil.copyfile(url2pathname(parsed.path), destination)
            return

        with self.client.stream("GET", url) as response:
            response.raise_for_status()
            with open(destination, "wb") as f:
                for chunk in response.iter_bytes(CHUNK_SIZE):
                    f.write(chunk)
