"""
Runtime resource setup for the share redirect control plane.

Every process checks that its data directory exists and creates the log
file and mountmap on first use. Installation additionally writes the
machine-local random seed that orders zone-redundant addresses.
"""

import os
from pathlib import Path
from typing import Optional

from .config import SystemConfig
from .exceptions import ResourceUnavailableError
from .mountmap_store import FileImmutability

RANDOM_SEED_BYTES = 256


def ensure_runtime_resources(
    config: SystemConfig,
    immutability: Optional[FileImmutability] = None,
) -> None:
    """
    Verify the data directory and create the log file and mountmap.

    A freshly created mountmap is marked immutable straight away.

    Raises:
        ResourceUnavailableError: If the data directory is missing or a
                                  required file cannot be created
    """
    paths = config.paths
    if not paths.data_dir.is_dir():
        raise ResourceUnavailableError(
            code="missing_data_dir",
            message=f"'{paths.data_dir}' is not present, cannot continue!",
            details={"data_dir": str(paths.data_dir)},
        )

    _touch(paths.log_file)

    if not paths.mountmap_file.exists():
        _touch(paths.mountmap_file)
        if immutability is not None:
            immutability.set(True)


def create_random_seed(seed_file: Path, size: int = RANDOM_SEED_BYTES, force: bool = False) -> bool:
    """
    Write the machine-local random seed, once per installation.

    Args:
        seed_file: Destination path
        size: Number of random bytes
        force: Overwrite an existing seed

    Returns:
        True if a new seed was written
    """
    if seed_file.exists() and seed_file.stat().st_size > 0 and not force:
        return False

    try:
        seed_file.parent.mkdir(parents=True, exist_ok=True)
        seed_file.write_bytes(os.urandom(size))
    except OSError as e:
        raise ResourceUnavailableError(
            code="seed_write_failed",
            message=f"Not able to create '{seed_file}': {e}",
            details={"file_path": str(seed_file)},
        )
    return True


def _touch(path: Path) -> None:
    if path.exists():
        return
    try:
        path.touch()
    except OSError as e:
        raise ResourceUnavailableError(
            code="create_failed",
            message=f"Not able to create '{path}': {e}",
            details={"file_path": str(path)},
        )
