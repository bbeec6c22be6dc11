# src/forgeflow/orchestrator/build.py
"""Build Orchestrator: run builder engines over build specs.

BuildOrchestrator runs an ordered list of builders over the same specs,
sequentially and fail-fast, and concatenates their artifacts in builder
order. BuildService is the project-level workflow around it. It groups the
configured build specs by engine, prepares the forge directories, and
records every artifact in the store.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import ValidationError

from forgeflow.contracts.document import Document
from forgeflow.contracts.engine import EngineChain, SubEngine
from forgeflow.contracts.enums import EngineKind
from forgeflow.contracts.errors import (
    ArtifactParseError,
    ForgeError,
    InvalidArgumentError,
    NotFoundError,
    StepFailedError,
)
from forgeflow.contracts.records import Artifact, utc_now
from forgeflow.core.config import ForgeSettings
from forgeflow.core.logging import get_logger
from forgeflow.core.store import ArtifactStore, StoreSnapshot
from forgeflow.engines.resolver import EngineResolver
from forgeflow.orchestrator.types import EngineCaller, ForgeDirectories, with_engine_config
from forgeflow.orchestrator.workspace import ForgeWorkspace

logger = get_logger(__name__)

BUILD_TOOL = "build"
BUILD_BATCH_TOOL = "buildBatch"


def parse_artifacts(raw: Any, *, engine: str = "", tool: str = BUILD_TOOL) -> list[Artifact]:
    """Interpret a builder's result as artifacts.

    Accepted shapes:
        - a single artifact mapping (non-empty ``name``)
        - a mapping with an ``artifacts`` list
        - a list of artifact mappings

    Raises:
        ArtifactParseError: Any other shape, or an entry that is not an artifact
    """
    if isinstance(raw, Document):
        raw = raw.raw

    items: list[Any]
    if isinstance(raw, Mapping):
        name = raw.get("name")
        if isinstance(name, str) and name:
            items = [raw]
        elif isinstance(raw.get("artifacts"), list):
            items = raw["artifacts"]
        else:
            raise ArtifactParseError(engine, tool, "result is neither an artifact nor an artifact list")
    elif isinstance(raw, list):
        items = raw
    else:
        raise ArtifactParseError(engine, tool, f"unexpected result type {type(raw).__name__}")

    artifacts: list[Artifact] = []
    for i, item in enumerate(items):
        if not isinstance(item, Mapping):
            raise ArtifactParseError(engine, tool, f"artifact[{i}] is {type(item).__name__}, not a mapping")
        try:
            artifacts.append(Artifact.model_validate(dict(item)))
        except ValidationError as e:
            raise ArtifactParseError(engine, tool, f"artifact[{i}]: {e}") from e
    return artifacts


class BuildOrchestrator:
    """Runs several builder engines over the same build specs.

    Args:
        resolver: Shared engine resolver
        caller: Engine caller (usually an EngineClient)
    """

    def __init__(self, *, resolver: EngineResolver, caller: EngineCaller) -> None:
        self._resolver = resolver
        self._caller = caller

    def orchestrate(
        self,
        builders: EngineChain | Sequence[SubEngine],
        build_specs: Sequence[Mapping[str, Any]],
        dirs: ForgeDirectories | Mapping[str, str],
    ) -> list[Artifact]:
        """Run every builder in order and return all artifacts in builder order.

        Each builder receives its own deep copy of every spec, with ``dirs``
        and its builder-level settings injected. The input specs are never
        mutated. One spec is sent with ``build``; several with ``buildBatch``.

        Raises:
            InvalidArgumentError: No builders or no build specs
            StepFailedError: A builder failed (resolution, call or parse); no
                partial artifact list is returned. ``step`` is the builder's
                1-based position
        """
        steps = builders.steps if isinstance(builders, EngineChain) else tuple(builders)
        if not steps:
            raise InvalidArgumentError("no builder engines provided")
        if not build_specs:
            raise InvalidArgumentError("no build specs provided")
        dir_params = dirs.to_params() if isinstance(dirs, ForgeDirectories) else dict(dirs)

        collected: list[Artifact] = []
        for index, builder in enumerate(steps, start=1):
            specs = [with_engine_config({**spec, **dir_params}, builder) for spec in build_specs]
            if len(specs) == 1:
                tool, arguments = BUILD_TOOL, specs[0]
            else:
                tool, arguments = BUILD_BATCH_TOOL, {"specs": specs}

            try:
                command = self._resolver.resolve(builder.engine, kind=EngineKind.BUILDER)
                output = self._caller.call(command, tool, arguments)
                artifacts = parse_artifacts(output, engine=builder.engine, tool=tool)
            except ForgeError as e:
                logger.warning("builder failed", builder=index, engine=builder.engine, error=str(e))
                raise StepFailedError(builder.engine, index, e) from e

            logger.info("builder finished", builder=index, engine=builder.engine, artifacts=len(artifacts))
            collected.extend(artifacts)
        return collected


class BuildService:
    """Project build workflow: configured specs -> engines -> artifact store.

    Args:
        settings: Project settings (build specs, aliases)
        orchestrator: Builder orchestrator
        store: Artifact store receiving the built artifacts
        resolver: Shared engine resolver (alias chains)
        workspace: Forge directories for each build
    """

    def __init__(
        self,
        settings: ForgeSettings,
        *,
        orchestrator: BuildOrchestrator,
        store: ArtifactStore,
        resolver: EngineResolver,
        workspace: ForgeWorkspace,
    ) -> None:
        self._settings = settings
        self._orchestrator = orchestrator
        self._store = store
        self._resolver = resolver
        self._workspace = workspace

    def group_specs(self, name: str | None = None) -> dict[str, list[dict[str, Any]]]:
        """Build parameters grouped by engine reference, in configuration order.

        Raises:
            NotFoundError: ``name`` given but no build spec has that name
        """
        groups: dict[str, list[dict[str, Any]]] = {}
        for spec in self._settings.build:
            if name is not None and spec.name != name:
                continue
            groups.setdefault(spec.engine, []).append(spec.to_params())
        if name is not None and not groups:
            raise NotFoundError("artifact", name)
        return groups

    def builders_for(self, engine: str) -> tuple[SubEngine, ...]:
        """Builders serving ``engine``: an alias's builder chain, or the engine itself."""
        return self._resolver.sub_engines(engine, EngineKind.BUILDER)

    def build(self, name: str | None = None) -> list[Artifact]:
        """Build all configured artifacts (or only ``name``) and record them.

        Raises:
            NotFoundError: ``name`` does not match a build spec
            ResolutionError: A build engine alias is unknown or not a builder
            StepFailedError: A builder failed; nothing is recorded
            PersistenceError: Directory creation or store write failed
        """
        groups = self.group_specs(name)
        if not groups:
            logger.info("no artifacts to build")
            return []

        # Resolve every group's builders before touching the filesystem
        plan = [(engine, self.builders_for(engine), specs) for engine, specs in groups.items()]
        dirs = self._workspace.prepare()

        artifacts: list[Artifact] = []
        for engine, builders, specs in plan:
            logger.info("building artifacts", engine=engine, specs=len(specs), builders=len(builders))
            artifacts.extend(self._orchestrator.orchestrate(builders, specs, dirs))

        built_at = utc_now().isoformat()
        for artifact in artifacts:
            if not artifact.timestamp:
                artifact.timestamp = built_at

        def record(snapshot: StoreSnapshot) -> None:
            for artifact in artifacts:
                snapshot.add_or_update_artifact(artifact)

        self._store.update(record)
        logger.info("build finished", artifacts=len(artifacts))
        return artifacts
