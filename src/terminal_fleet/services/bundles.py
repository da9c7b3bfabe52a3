"""
Per-instance configuration bundles.

A bundle is a zip archive extracted over an instance's install directory
(overwriting existing files). Nested archives are left as-is.
"""
from zipfile import BadZipFile, ZipFile
import logging
import zlib
from pathlib import Path
from typing import List, Optional, Union


class BundleError(Exception):
    """Raised when a config bundle cannot be applied."""

    pass


def _safe_target(root: Path, member: str) -> Path:
    target = (root / member).resolve()
    if target != root and root not in target.parents:
        raise BundleError(f"Bundle entry escapes target directory: {member}")
    return target


def extract_bundle(
    zip_path: Union[str, Path],
    target_dir: Union[str, Path],
    logger: Optional[logging.Logger] = None,
) -> List[Path]:
    """
    Extract every entry of `zip_path` into `target_dir`, overwriting.

    Returns:
        Paths of the extracted files

    Raises:
        BundleError: Missing/corrupt archive, an entry outside target_dir,
            or a write failure
    """
    logger = logger or logging.getLogger(__name__)
    zip_path = Path(zip_path)
    root = Path(target_dir).resolve()
    if not zip_path.exists():
        raise BundleError(f"Bundle not found: {zip_path}")
    if not root.is_dir():
        raise BundleError(f"Bundle target is not a directory: {root}")

    extracted = []
    try:
        with ZipFile(zip_path, "r") as zip_ref:
            members = zip_ref.infolist()
            # Validate every entry before writing anything
            for info in members:
                _safe_target(root, info.filename)

            logger.info(f"Extracting '{zip_path.name}' to {root}")
            for info in members:
                zip_ref.extract(info, root)
                if not info.is_dir():
                    extracted.append(_safe_target(root, info.filename))
    except (BadZipFile, zlib.error) as e:
        raise BundleError(f"Corrupt bundle {zip_path}: {e}") from e
    except OSError as e:
        raise BundleError(f"Could not extract bundle {zip_path.name} into {root}: {e}") from e

    return extracted
