# src/forgeflow/engines/resolver.py
"""Engine Reference Resolver: engine reference -> launch command.

Resolution never starts a process. It only decides *how* an engine would
be started, probing the filesystem and the interpreter's import path
read-only. Probe answers cannot change during a run, so each resolver
memoizes them; construct one resolver at startup and pass it to every
orchestrator that needs it.

Toolchain references (``py://<path>[@<version>]``) resolve in this order,
preferring a local copy:

1. ``<project root>/build/bin/<short name>`` (locally built engine)
2. ``<short name>`` on PATH (installed console script)
3. the module importable here -> ``<python> -m <module>``
4. ``pipx run --spec <distribution>[==<version>] <short name>``: remote
   fetch, works from any directory
"""

from __future__ import annotations

import os
import shutil
import sys
import threading
from collections.abc import Callable
from dataclasses import replace
from importlib.machinery import PathFinder
from pathlib import Path
from types import MappingProxyType
from typing import TypeVar

from forgeflow.contracts.engine import (
    EngineChain,
    EngineReference,
    LaunchCommand,
    SetupSpec,
    SubEngine,
    parse_reference,
)
from forgeflow.contracts.enums import EngineKind
from forgeflow.contracts.errors import ResolutionError
from forgeflow.core.config import EngineAliasSettings, ForgeSettings, TestStageSettings
from forgeflow.core.logging import get_logger

logger = get_logger(__name__)

# Files marking the project root, checked walking up from the working directory
_ROOT_MARKERS: tuple[str, ...] = ("forge.yaml", "pyproject.toml")

# Versions that mean "no pin" for remote fetch
_UNPINNED_VERSIONS = frozenset({"latest", "dev"})

T = TypeVar("T")


def module_exists(module: str) -> bool:
    """Whether ``module`` is importable, without importing anything.

    Walks the dotted path with PathFinder so no package ``__init__`` runs.
    """
    search_path: list[str] | None = None
    fullname = ""
    parts = module.split(".")
    for i, part in enumerate(parts):
        fullname = f"{fullname}.{part}" if fullname else part
        spec = PathFinder.find_spec(fullname, search_path)
        if spec is None:
            return False
        if i < len(parts) - 1:
            locations = spec.submodule_search_locations
            if not locations:
                return False
            search_path = list(locations)
    return True


class EngineResolver:
    """Resolves engine references against one project's settings.

    Args:
        settings: Project settings (aliases, engine package, report engines)
        cwd: Directory the project root search starts from (default: cwd)
    """

    def __init__(self, settings: ForgeSettings, *, cwd: str | Path | None = None) -> None:
        self._settings = settings
        self._cwd = Path(cwd) if cwd is not None else Path.cwd()
        self._lock = threading.Lock()
        self._probes: dict[tuple[str, str], object] = {}

    @property
    def settings(self) -> ForgeSettings:
        return self._settings

    # === Memoized probing ===

    def _memo(self, kind: str, key: str, probe: Callable[[], T]) -> T:
        with self._lock:
            if (kind, key) in self._probes:
                return self._probes[(kind, key)]  # type: ignore[return-value]
        value = probe()
        with self._lock:
            # First answer wins so every caller sees the same result
            return self._probes.setdefault((kind, key), value)  # type: ignore[return-value]

    @property
    def project_root(self) -> Path:
        """Nearest ancestor of cwd holding a root marker, else cwd."""
        return self._memo("root", "", self._find_project_root)

    def _find_project_root(self) -> Path:
        start = self._cwd.resolve()
        for candidate in (start, *start.parents):
            if any((candidate / marker).is_file() for marker in _ROOT_MARKERS):
                return candidate
        return start

    def _local_binary(self, name: str) -> str | None:
        def probe() -> str | None:
            path = self.project_root / "build" / "bin" / name
            if path.is_file() and os.access(path, os.X_OK):
                return str(path)
            return None

        return self._memo("local", name, probe)

    def _on_path(self, name: str) -> str | None:
        return self._memo("which", name, lambda: shutil.which(name))

    def _importable(self, module: str) -> bool:
        return self._memo("module", module, lambda: module_exists(module))

    # === Resolution ===

    def resolve(self, ref: str, *, kind: EngineKind | None = None) -> LaunchCommand:
        """Compute the launch command for ``ref``.

        Args:
            ref: Engine reference string
            kind: When given, an alias must be tagged with this kind

        Raises:
            ResolutionError: Malformed reference, unknown alias, alias of the
                wrong kind, multi-engine alias, or alias cycle
        """
        return self._resolve(ref, kind=kind, seen=())

    def _resolve(self, ref: str, *, kind: EngineKind | None, seen: tuple[str, ...]) -> LaunchCommand:
        parsed = parse_reference(ref)
        if not parsed.is_alias:
            return self._resolve_toolchain(parsed)

        if parsed.path in seen:
            raise ResolutionError(ref, f"circular alias reference: {' -> '.join((*seen, parsed.path))}")
        alias = self._lookup_alias(ref, parsed, kind)

        target = self._single_engine(ref, alias)
        # Only the outermost alias is kind-checked; nested aliases are plain indirection
        return self._resolve(target, kind=None, seen=(*seen, parsed.path))

    def _lookup_alias(self, ref: str, parsed: EngineReference, kind: EngineKind | None) -> EngineAliasSettings:
        alias = self._settings.get_alias(parsed.path)
        if alias is None:
            raise ResolutionError(ref, "engine alias not found (check the engines section)")
        if kind is not None and alias.type is not kind:
            raise ResolutionError(ref, f"alias is of type {alias.type}, expected {kind}")
        return alias

    @staticmethod
    def _single_engine(ref: str, alias: EngineAliasSettings) -> str:
        if alias.engine is not None:
            return alias.engine
        if alias.type is EngineKind.TESTENV:
            raise ResolutionError(ref, "testenv alias is an engine chain and cannot be resolved to a single engine")
        entries = alias.entries
        if len(entries) != 1:
            raise ResolutionError(ref, f"multi-engine alias ({len(entries)} engines) cannot be resolved to a single engine")
        return entries[0].engine

    def _resolve_toolchain(self, ref: EngineReference) -> LaunchCommand:
        display = str(ref)
        short = ref.short_name

        local = self._local_binary(short)
        if local is not None:
            return LaunchCommand(local, display=display)

        for name in dict.fromkeys((short, short.replace("_", "-"))):
            found = self._on_path(name)
            if found is not None:
                return LaunchCommand(found, display=display)

        # Short names live in the configured engine package
        target = replace(ref, path=f"{self._settings.engine_package}.{ref.module}") if ref.is_short else ref
        if self._importable(target.module):
            return LaunchCommand(sys.executable, ("-m", target.module), display=display)

        distribution = target.distribution
        if ref.version is not None and ref.version not in _UNPINNED_VERSIONS:
            distribution = f"{distribution}=={ref.version.removeprefix('v')}"
        logger.debug("engine not found locally, using remote fetch", engine=display, spec=distribution)
        return LaunchCommand("pipx", ("run", "--spec", distribution, short), display=display)

    # === Chains and stage setup ===

    def chain(self, ref: str, kind: EngineKind) -> EngineChain:
        """Ordered sub-engines of an alias tagged with ``kind``.

        Raises:
            ResolutionError: Not an alias, unknown alias, wrong kind, or empty
        """
        parsed = parse_reference(ref)
        if not parsed.is_alias:
            raise ResolutionError(ref, "expected an alias:// reference for an engine chain")
        alias = self._lookup_alias(ref, parsed, kind)

        if alias.entries:
            steps = tuple(SubEngine(engine=e.engine, spec=MappingProxyType(dict(e.spec))) for e in alias.entries)
        elif alias.engine is not None:
            steps = (SubEngine(engine=alias.engine),)
        else:
            raise ResolutionError(ref, f"no {kind} engines configured")
        return EngineChain(alias=alias.alias, steps=steps)

    def setup_for(self, stage: TestStageSettings) -> SetupSpec:
        """Environment setup of ``stage``: none, a direct engine, or a chain."""
        if stage.testenv is None:
            return SetupSpec.none()
        if parse_reference(stage.testenv).is_alias:
            return SetupSpec.of_chain(self.chain(stage.testenv, EngineKind.TESTENV))
        return SetupSpec.direct(stage.testenv)

    def sub_engines(self, ref: str, kind: EngineKind) -> tuple[SubEngine, ...]:
        """Engines serving ``ref`` in role ``kind``: an alias's chain, or ``ref`` itself."""
        if parse_reference(ref).is_alias:
            return self.chain(ref, kind).steps
        return (SubEngine(engine=ref),)
