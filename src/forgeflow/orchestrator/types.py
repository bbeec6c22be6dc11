# src/forgeflow/orchestrator/types.py
"""Interfaces shared by the stage, build and test-run orchestrators.

This module is a LEAF MODULE - it must NOT import from the orchestrator
modules. They import FROM here.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from forgeflow.contracts.document import Document
from forgeflow.contracts.engine import LaunchCommand, SubEngine


@runtime_checkable
class EngineCaller(Protocol):
    """Calls one tool on one engine process and returns its output.

    ``EngineClient`` is the production implementation. Orchestrator tests
    substitute a recording fake.
    """

    def call(self, command: LaunchCommand, tool: str, arguments: Mapping[str, Any]) -> Document: ...


@dataclass(frozen=True, slots=True)
class ForgeDirectories:
    """Absolute directories injected into every build and test-run call.

    Attributes:
        tmp_dir: Per-run scratch directory (``<tmp>/tmp-<uuid>``)
        build_dir: Where builders write their outputs
        root_dir: Project root
    """

    tmp_dir: Path
    build_dir: Path
    root_dir: Path

    def to_params(self) -> dict[str, str]:
        return {
            "tmpDir": str(self.tmp_dir),
            "buildDir": str(self.build_dir),
            "rootDir": str(self.root_dir),
        }


# Engine-level settings copied from a sub-engine's spec into every call it receives
ENGINE_CONFIG_KEYS: tuple[str, ...] = ("command", "args", "env", "envFile", "workDir")


def with_engine_config(params: Mapping[str, Any], engine: SubEngine) -> dict[str, Any]:
    """Deep copy of ``params`` with ``engine``'s non-empty engine-level settings injected."""
    prepared = copy.deepcopy(dict(params))
    for key in ENGINE_CONFIG_KEYS:
        value = engine.spec.get(key)
        if value:
            prepared[key] = copy.deepcopy(value)
    return prepared
