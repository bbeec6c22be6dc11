# src/forgeflow/core/__init__.py
"""Core infrastructure: Configuration, Artifact store, Identifiers, Logging."""

from forgeflow.core.config import (
    BuildSpecSettings,
    DirectorySettings,
    EngineAliasSettings,
    ForgeSettings,
    SubEngineSettings,
    TestStageSettings,
    load_settings,
)
from forgeflow.core.identifiers import generate_test_id, parse_test_id
from forgeflow.core.logging import configure_logging, get_logger
from forgeflow.core.store import ArtifactStore, StoreSnapshot

__all__ = [
    "ArtifactStore",
    "BuildSpecSettings",
    "DirectorySettings",
    "EngineAliasSettings",
    "ForgeSettings",
    "StoreSnapshot",
    "SubEngineSettings",
    "TestStageSettings",
    "configure_logging",
    "generate_test_id",
    "get_logger",
    "load_settings",
    "parse_test_id",
]
