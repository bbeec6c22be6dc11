# src/forgeflow/orchestrator/workspace.py
"""Forge directories shared by build and test-run workflows.

Every build and every test run gets a fresh scratch directory
``<tmp>/tmp-<uuid>`` next to the shared build directory. Old scratch
directories are pruned, keeping the most recent ones. Test environment
working directories live in the same parent but never carry the
``tmp-`` prefix, so pruning leaves them alone.
"""

from __future__ import annotations

import shutil
import uuid
from pathlib import Path

from forgeflow.contracts.errors import PersistenceError
from forgeflow.core.config import ForgeSettings
from forgeflow.core.logging import get_logger
from forgeflow.orchestrator.types import ForgeDirectories

logger = get_logger(__name__)

TMP_DIR_PREFIX = "tmp-"
DEFAULT_KEEP_TMP_DIRS = 10


class ForgeWorkspace:
    """Creates and prunes the forge directories of one project.

    Args:
        settings: Project settings (directory conventions)
        project_root: Anchor for relative directories
        keep_tmp_dirs: Number of most recent scratch directories kept
    """

    def __init__(
        self,
        settings: ForgeSettings,
        *,
        project_root: Path,
        keep_tmp_dirs: int = DEFAULT_KEEP_TMP_DIRS,
    ) -> None:
        self._settings = settings
        self._project_root = project_root
        self._keep_tmp_dirs = keep_tmp_dirs

    def anchor(self, path: str) -> Path:
        candidate = Path(path)
        if candidate.is_absolute():
            return candidate
        return (self._project_root / candidate).resolve()

    def create_directories(self) -> ForgeDirectories:
        """Create the build directory and a fresh scratch directory.

        Raises:
            PersistenceError: A directory could not be created
        """
        root = self.anchor(self._settings.directories.root_dir)
        build_dir = self.anchor(self._settings.directories.build_dir)
        tmp_dir = self.anchor(self._settings.directories.tmp_dir) / f"{TMP_DIR_PREFIX}{uuid.uuid4()}"
        for path in (build_dir, tmp_dir):
            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise PersistenceError(str(path), f"cannot create directory: {e}") from e
        return ForgeDirectories(tmp_dir=tmp_dir, build_dir=build_dir, root_dir=root)

    def cleanup_tmp_dirs(self) -> list[Path]:
        """Remove all but the most recent scratch directories.

        Failures are logged and skipped. Returns the directories removed.
        """
        base = self.anchor(self._settings.directories.tmp_dir)
        if not base.is_dir():
            return []
        candidates: list[tuple[float, Path]] = []
        for entry in base.iterdir():
            if not entry.name.startswith(TMP_DIR_PREFIX) or not entry.is_dir():
                continue
            try:
                candidates.append((entry.stat().st_mtime, entry))
            except OSError:
                continue
        candidates.sort(key=lambda item: item[0])

        removed: list[Path] = []
        for _, path in candidates[: max(len(candidates) - self._keep_tmp_dirs, 0)]:
            try:
                shutil.rmtree(path)
            except OSError as e:
                logger.warning("failed to remove old tmp directory", path=str(path), error=str(e))
                continue
            removed.append(path)
        return removed

    def prepare(self) -> ForgeDirectories:
        """Fresh directories for one run, pruning old scratch directories."""
        dirs = self.create_directories()
        self.cleanup_tmp_dirs()
        return dirs
