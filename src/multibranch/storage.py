"""
On-disk layout and atomic JSON persistence for multi-branch projects.

Each project lives under its own root directory:

    <root>/config.json                    project state
    <root>/template/config.json           template configuration
    <root>/branches/<encoded>/config.json one file per child
    <root>/sync-branches.log              activity log of sync passes

The template and branches namespaces never overlap; a child can never be
stored where the template lives.
"""

import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, List

from .errors import ConfigCorruptionError


logger = logging.getLogger(__name__)

CONFIG_FILE = "config.json"
TEMPLATE_DIR = "template"
BRANCHES_DIR = "branches"
SYNC_LOG_FILE = "sync-branches.log"


def atomic_write_json(path: Path, data: Any) -> None:
    """
    Write JSON to a file atomically.

    Uses atomic write pattern to prevent corruption:
    1. Write to temporary file
    2. Sync to disk
    3. Atomic rename over existing file

    Raises:
        RuntimeError: If the write fails
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.stem}_", suffix=".tmp"
    )

    try:
        with os.fdopen(tmp_fd, "w") as f:
            json.dump(data, f, indent=2, default=str)
            f.flush()
            os.fsync(f.fileno())

        os.replace(tmp_path, str(path))
        logger.debug(f"Saved {path} atomically")

    except Exception as e:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise RuntimeError(f"Failed to save {path}: {e}")


def read_json(path: Path) -> Dict[str, Any]:
    """
    Read a JSON object from disk.

    Raises:
        FileNotFoundError: If the file does not exist
        ConfigCorruptionError: If the file is not a readable JSON object
    """
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise
    except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
        raise ConfigCorruptionError(path, str(e))

    if not isinstance(data, dict):
        raise ConfigCorruptionError(path, "expected a JSON object")
    return data


class ProjectStore:
    """Filesystem locations and persistence for one project root."""

    def __init__(self, root: Path):
        self.root = Path(root)

    @property
    def name(self) -> str:
        return self.root.name

    @property
    def config_file(self) -> Path:
        return self.root / CONFIG_FILE

    @property
    def template_dir(self) -> Path:
        return self.root / TEMPLATE_DIR

    @property
    def template_file(self) -> Path:
        return self.template_dir / CONFIG_FILE

    @property
    def branches_dir(self) -> Path:
        return self.root / BRANCHES_DIR

    @property
    def sync_log_file(self) -> Path:
        return self.root / SYNC_LOG_FILE

    def branch_dir(self, encoded_name: str) -> Path:
        return self.branches_dir / encoded_name

    def branch_file(self, encoded_name: str) -> Path:
        return self.branch_dir(encoded_name) / CONFIG_FILE

    def exists(self) -> bool:
        return self.config_file.exists()

    def ensure_layout(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        self.template_dir.mkdir(exist_ok=True)
        self.branches_dir.mkdir(exist_ok=True)

    def branch_names(self) -> List[str]:
        """Encoded names of all children persisted under branches/."""
        if not self.branches_dir.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self.branches_dir.iterdir()
            if entry.is_dir() and (entry / CONFIG_FILE).exists()
        )

    def delete_branch(self, encoded_name: str) -> None:
        path = self.branch_dir(encoded_name)
        if path.exists():
            shutil.rmtree(path)
            logger.debug(f"Removed directory: {path}")

    def delete_all(self) -> None:
        if self.root.exists():
            shutil.rmtree(self.root)
            logger.debug(f"Removed project directory: {self.root}")
