# src/forgeflow/orchestrator/factory.py
"""Wiring of resolver, client, store and orchestrators for one project."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from forgeflow.core.config import ForgeSettings
from forgeflow.core.store import ArtifactStore
from forgeflow.engines.client import EngineClient
from forgeflow.engines.resolver import EngineResolver
from forgeflow.orchestrator.build import BuildOrchestrator, BuildService
from forgeflow.orchestrator.runner import RunService, TestRunnerOrchestrator
from forgeflow.orchestrator.testenv import StageOrchestrator
from forgeflow.orchestrator.types import EngineCaller
from forgeflow.orchestrator.workspace import ForgeWorkspace


@dataclass(frozen=True, slots=True)
class Orchestrators:
    """Everything a front end (CLI or server mode) needs, sharing one resolver."""

    settings: ForgeSettings
    resolver: EngineResolver
    store: ArtifactStore
    stages: StageOrchestrator
    builds: BuildService
    runs: RunService


def build_orchestrators(
    settings: ForgeSettings,
    *,
    caller: EngineCaller | None = None,
    cwd: str | Path | None = None,
) -> Orchestrators:
    """Construct the orchestrators for ``settings``.

    Args:
        settings: Project settings
        caller: Engine caller override (default: EngineClient bounded by
            ``settings.engine_timeout_seconds``)
        cwd: Directory the project root search starts from
    """
    resolver = EngineResolver(settings, cwd=cwd)
    if caller is None:
        caller = EngineClient(timeout=settings.engine_timeout_seconds)

    store_path = Path(settings.artifact_store_path)
    if not store_path.is_absolute():
        store_path = resolver.project_root / store_path
    store = ArtifactStore(store_path)
    workspace = ForgeWorkspace(settings, project_root=resolver.project_root)

    stages = StageOrchestrator(settings, resolver=resolver, caller=caller, store=store)
    builds = BuildService(
        settings,
        orchestrator=BuildOrchestrator(resolver=resolver, caller=caller),
        store=store,
        resolver=resolver,
        workspace=workspace,
    )
    runs = RunService(
        settings,
        orchestrator=TestRunnerOrchestrator(resolver=resolver, caller=caller),
        stages=stages,
        store=store,
        resolver=resolver,
        workspace=workspace,
    )
    return Orchestrators(settings=settings, resolver=resolver, store=store, stages=stages, builds=builds, runs=runs)
