# tests/orchestrator/test_workspace.py
"""Tests for forge directory creation and scratch directory pruning."""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path

from forgeflow.core.config import ForgeSettings
from forgeflow.orchestrator.workspace import TMP_DIR_PREFIX, ForgeWorkspace


class TestForgeWorkspace:
    def test_directories_created(self, make_settings: Callable[..., ForgeSettings], project_dir: Path) -> None:
        dirs = ForgeWorkspace(make_settings(), project_root=project_dir).create_directories()

        assert dirs.build_dir == project_dir / "build"
        assert dirs.build_dir.is_dir()
        assert dirs.tmp_dir.is_dir()
        assert dirs.tmp_dir.parent == project_dir / ".forge" / "tmp"
        assert dirs.tmp_dir.name.startswith(TMP_DIR_PREFIX)
        assert dirs.root_dir == project_dir

    def test_relative_directories_anchored_at_project_root(
        self, make_settings: Callable[..., ForgeSettings], project_dir: Path
    ) -> None:
        settings = make_settings(directories={"tmp_dir": "scratch", "build_dir": "out"})

        dirs = ForgeWorkspace(settings, project_root=project_dir).create_directories()

        assert dirs.build_dir == project_dir / "out"
        assert dirs.tmp_dir.parent == project_dir / "scratch"

    def test_old_tmp_dirs_pruned(self, make_settings: Callable[..., ForgeSettings], project_dir: Path) -> None:
        base = project_dir / ".forge" / "tmp"
        created = []
        for i in range(5):
            path = base / f"{TMP_DIR_PREFIX}{i}"
            path.mkdir(parents=True)
            os.utime(path, (1_000_000 + i, 1_000_000 + i))
            created.append(path)
        # Test environment working directories are left alone
        (base / "test-unit-20260101-00000000").mkdir()

        removed = ForgeWorkspace(make_settings(), project_root=project_dir, keep_tmp_dirs=2).cleanup_tmp_dirs()

        assert removed == created[:3]
        assert {p.name for p in base.iterdir()} == {f"{TMP_DIR_PREFIX}3", f"{TMP_DIR_PREFIX}4", "test-unit-20260101-00000000"}

    def test_missing_tmp_root_prunes_nothing(self, make_settings: Callable[..., ForgeSettings], project_dir: Path) -> None:
        assert ForgeWorkspace(make_settings(), project_root=project_dir).cleanup_tmp_dirs() == []

    def test_prepare_creates_then_prunes(self, make_settings: Callable[..., ForgeSettings], project_dir: Path) -> None:
        workspace = ForgeWorkspace(make_settings(), project_root=project_dir, keep_tmp_dirs=1)
        first = workspace.prepare()
        os.utime(first.tmp_dir, (1_000_000, 1_000_000))

        second = workspace.prepare()

        assert second.tmp_dir.is_dir()
        assert not first.tmp_dir.exists()
