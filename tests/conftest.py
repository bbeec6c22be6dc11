# tests/conftest.py
"""Shared test fixtures.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from hypothesis import Phase, Verbosity, settings

from forgeflow.core.config import ForgeSettings
from forgeflow.core.store import ArtifactStore
from forgeflow.engines.resolver import EngineResolver
from tests.fixtures.fakes import RecordingCaller

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Empty project directory marked as a project root."""
    (tmp_path / "forge.yaml").write_text("name: test-project\n")
    return tmp_path


@pytest.fixture
def make_settings(project_dir: Path) -> Callable[..., ForgeSettings]:
    """Factory for ForgeSettings anchored in ``project_dir``.

    Keyword arguments are passed to ForgeSettings as raw config, so nested
    sections can be plain dicts the way they come out of YAML.
    """

    def factory(**overrides: Any) -> ForgeSettings:
        raw: dict[str, Any] = {
            "name": "test-project",
            "artifact_store_path": str(project_dir / ".forge" / "artifacts.yaml"),
            "directories": {"tmp_dir": str(project_dir / ".forge" / "tmp")},
        }
        raw.update(overrides)
        return ForgeSettings.model_validate(raw)

    return factory


@pytest.fixture
def caller() -> RecordingCaller:
    return RecordingCaller()


@pytest.fixture
def resolver_for(project_dir: Path) -> Callable[[ForgeSettings], EngineResolver]:
    def factory(settings_: ForgeSettings) -> EngineResolver:
        return EngineResolver(settings_, cwd=project_dir)

    return factory


@pytest.fixture
def store(project_dir: Path) -> ArtifactStore:
    return ArtifactStore(project_dir / ".forge" / "artifacts.yaml")
