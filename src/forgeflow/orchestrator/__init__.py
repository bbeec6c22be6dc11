"""Orchestration of engine calls.

- StageOrchestrator: create/delete test environments through environment
  engines (direct or chained)
- BuildOrchestrator: run builder engines over build specs, fail-fast
- BuildService: project build workflow recording artifacts in the store
- TestRunnerOrchestrator: run test runner engines, fail-fast, merging reports
- RunService: project test-run workflow recording reports and settling the
  environment's status
"""

from forgeflow.orchestrator.build import BuildOrchestrator, BuildService, parse_artifacts
from forgeflow.orchestrator.factory import Orchestrators, build_orchestrators
from forgeflow.orchestrator.runner import (
    RunResult,
    RunService,
    TestRunnerOrchestrator,
    merge_test_reports,
    parse_test_report,
)
from forgeflow.orchestrator.testenv import StageOrchestrator
from forgeflow.orchestrator.types import EngineCaller, ForgeDirectories
from forgeflow.orchestrator.workspace import ForgeWorkspace

__all__ = [
    "BuildOrchestrator",
    "BuildService",
    "EngineCaller",
    "ForgeDirectories",
    "ForgeWorkspace",
    "Orchestrators",
    "RunResult",
    "RunService",
    "StageOrchestrator",
    "TestRunnerOrchestrator",
    "build_orchestrators",
    "merge_test_reports",
    "parse_artifacts",
    "parse_test_report",
]
