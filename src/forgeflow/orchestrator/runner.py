# src/forgeflow/orchestrator/runner.py
"""Test Runner Orchestrator: run a stage's test runners and record the outcome.

TestRunnerOrchestrator runs an ordered list of runner engines with the same
parameters, sequentially and fail-fast, and merges their reports into one.
RunService is the project-level workflow around it. It picks or creates
the test environment, prepares the forge directories, stores the merged
report and moves the environment to passed or failed.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from forgeflow.contracts.document import Document
from forgeflow.contracts.engine import EngineChain, SubEngine
from forgeflow.contracts.enums import EngineKind, SetupKind, TestStatus
from forgeflow.contracts.errors import (
    ForgeError,
    InvalidArgumentError,
    NotFoundError,
    ReportParseError,
    StepFailedError,
)
from forgeflow.contracts.records import Coverage, TestEnvironment, TestReport, TestStats, utc_now
from forgeflow.core.config import ForgeSettings, TestStageSettings
from forgeflow.core.logging import get_logger
from forgeflow.core.store import ArtifactStore, StoreSnapshot
from forgeflow.engines.resolver import EngineResolver
from forgeflow.orchestrator.testenv import StageOrchestrator
from forgeflow.orchestrator.types import EngineCaller, with_engine_config
from forgeflow.orchestrator.workspace import ForgeWorkspace

logger = get_logger(__name__)

RUN_TOOL = "run"

STATUS_PASSED = "passed"
STATUS_FAILED = "failed"


def parse_test_report(raw: Any, *, engine: str = "", tool: str = RUN_TOOL) -> TestReport:
    """Interpret a runner's result as a test report.

    Missing ``id``, ``stage`` or ``status`` read as empty; the run workflow
    fills the first two and treats an empty status as failed.

    Raises:
        ReportParseError: Result is not a mapping or not a valid report
    """
    if isinstance(raw, Document):
        raw = raw.raw
    if not isinstance(raw, Mapping):
        raise ReportParseError(engine, tool, f"result is {type(raw).__name__}, not a mapping")
    try:
        return TestReport.model_validate({"id": "", "stage": "", "status": "", **raw})
    except ValidationError as e:
        raise ReportParseError(engine, tool, str(e)) from e


def _join(values: Sequence[str], sep: str) -> str:
    return sep.join(v for v in values if v)


def merge_test_reports(base: TestReport, other: TestReport) -> TestReport:
    """Aggregate of two runners' reports for the same run.

    ``id``, ``stage`` and ``start_time`` come from ``base``. Counts and
    durations are summed. The result passes only when both passed; any
    other combination fails. Coverage is averaged weighted by test count.
    """
    base_total, other_total = base.test_stats.total, other.test_stats.total
    if base_total > 0 and other_total > 0:
        percentage = (
            base.coverage.percentage * base_total + other.coverage.percentage * other_total
        ) / (base_total + other_total)
    elif base_total > 0:
        percentage = base.coverage.percentage
    else:
        percentage = other.coverage.percentage

    both_passed = base.status == STATUS_PASSED and other.status == STATUS_PASSED
    return TestReport(
        id=base.id,
        stage=base.stage,
        status=STATUS_PASSED if both_passed else STATUS_FAILED,
        start_time=base.start_time,
        duration=base.duration + other.duration,
        test_stats=TestStats(
            total=base_total + other_total,
            passed=base.test_stats.passed + other.test_stats.passed,
            failed=base.test_stats.failed + other.test_stats.failed,
            skipped=base.test_stats.skipped + other.test_stats.skipped,
        ),
        coverage=Coverage(
            percentage=percentage,
            file_path=_join([base.coverage.file_path, other.coverage.file_path], ","),
        ),
        artifact_files=[*base.artifact_files, *other.artifact_files],
        output_path=_join([base.output_path, other.output_path], ","),
        error_message=_join([base.error_message, other.error_message], "; "),
    )


class TestRunnerOrchestrator:
    """Runs several test runner engines for one test run.

    Args:
        resolver: Shared engine resolver
        caller: Engine caller (usually an EngineClient)
    """

    __test__ = False

    def __init__(self, *, resolver: EngineResolver, caller: EngineCaller) -> None:
        self._resolver = resolver
        self._caller = caller

    def orchestrate(
        self,
        runners: EngineChain | Sequence[SubEngine],
        params: Mapping[str, Any],
    ) -> TestReport:
        """Run every runner in order and return the merged report.

        Each runner receives its own deep copy of ``params`` with its
        runner-level settings injected.

        Raises:
            InvalidArgumentError: No runners
            StepFailedError: A runner failed (resolution, call or parse);
                ``step`` is the runner's 1-based position
        """
        steps = runners.steps if isinstance(runners, EngineChain) else tuple(runners)
        if not steps:
            raise InvalidArgumentError("no test runner engines provided")

        merged: TestReport | None = None
        for index, runner in enumerate(steps, start=1):
            arguments = with_engine_config(params, runner)
            try:
                command = self._resolver.resolve(runner.engine, kind=EngineKind.TEST_RUNNER)
                output = self._caller.call(command, RUN_TOOL, arguments)
                report = parse_test_report(output, engine=runner.engine)
            except ForgeError as e:
                logger.warning("test runner failed", runner=index, engine=runner.engine, error=str(e))
                raise StepFailedError(runner.engine, index, e) from e

            logger.info(
                "test runner finished",
                runner=index,
                engine=runner.engine,
                status=report.status,
                total=report.test_stats.total,
            )
            merged = report if merged is None else merge_test_reports(merged, report)

        assert merged is not None
        return merged


@dataclass(frozen=True, slots=True)
class RunResult:
    """Outcome of one test run.

    Attributes:
        report: Stored, merged test report
        environment: Environment the tests ran against, with its final
            status; None when the stage has no environment setup
    """

    report: TestReport
    environment: TestEnvironment | None

    @property
    def passed(self) -> bool:
        return self.report.status == STATUS_PASSED


class RunService:
    """Project test-run workflow: stage -> environment -> runners -> store.

    Args:
        settings: Project settings (stages, aliases)
        orchestrator: Test runner orchestrator
        stages: Stage orchestrator, used to create environments on demand
        store: Artifact store receiving reports and status changes
        resolver: Shared engine resolver
        workspace: Forge directories for each run
        clock: Time source override for tests
    """

    def __init__(
        self,
        settings: ForgeSettings,
        *,
        orchestrator: TestRunnerOrchestrator,
        stages: StageOrchestrator,
        store: ArtifactStore,
        resolver: EngineResolver,
        workspace: ForgeWorkspace,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings
        self._orchestrator = orchestrator
        self._stages = stages
        self._store = store
        self._resolver = resolver
        self._workspace = workspace
        self._clock = clock or utc_now

    def _stage(self, stage: str) -> TestStageSettings:
        if not stage:
            raise InvalidArgumentError("stage name is required")
        stage_settings = self._settings.get_stage(stage)
        if stage_settings is None:
            raise NotFoundError("test stage", stage)
        return stage_settings

    def runners_for(self, stage: str) -> tuple[SubEngine, ...]:
        """Runners of ``stage``: a test-runner alias's chain, or one engine.

        Raises:
            InvalidArgumentError: Stage has no runner configured
            ResolutionError: Runner alias unknown or not a test-runner alias
        """
        stage_settings = self._stage(stage)
        if stage_settings.runner is None:
            raise InvalidArgumentError(f"no test runner configured for stage {stage!r}")
        return self._resolver.sub_engines(stage_settings.runner, EngineKind.TEST_RUNNER)

    def _environment(self, stage: TestStageSettings, test_id: str | None) -> TestEnvironment | None:
        if test_id:
            env = self._store.read().get_environment(test_id)
            if env.name != stage.name:
                raise InvalidArgumentError(f"test environment {test_id} belongs to stage {env.name!r}, not {stage.name!r}")
            if env.status is not TestStatus.CREATED:
                raise InvalidArgumentError(f"test environment {test_id} already {env.status}; create a new one")
            return env
        if self._resolver.setup_for(stage).kind is SetupKind.NONE:
            return None
        return self._stages.create(stage.name)

    def run(self, stage: str, test_id: str | None = None) -> RunResult:
        """Run the tests of ``stage`` and record the outcome.

        Without ``test_id`` an environment is created first, unless the stage
        has no environment setup. A failed run still settles the environment
        as failed; only a successful run stores a report.

        Raises:
            InvalidArgumentError: Empty stage, no runner, or an unusable test ID
            NotFoundError: Stage or test environment unknown
            ResolutionError: Runner alias unknown or not a test-runner alias
            StepFailedError: A runner or an environment engine failed
            PersistenceError: Directory creation or store write failed
        """
        stage_settings = self._stage(stage)
        runners = self.runners_for(stage)
        env = self._environment(stage_settings, test_id)

        dirs = self._workspace.prepare()
        started = self._clock()
        report_id = str(uuid.uuid4())
        params: dict[str, Any] = {
            "id": report_id,
            "stage": stage,
            "name": f"{stage}-{started:%Y%m%d-%H%M%S}",
            **dirs.to_params(),
        }
        if env is not None:
            params["testID"] = env.id
            params["metadata"] = dict(env.metadata)

        log = logger.bind(stage=stage, report_id=report_id, test_id=env.id if env else None)
        log.info("running tests", runners=len(runners))
        try:
            report = self._orchestrator.orchestrate(runners, params)
        except StepFailedError:
            if env is not None:
                self._settle(env, TestStatus.FAILED)
            raise

        report.id = report.id or report_id
        report.stage = report.stage or stage
        report.start_time = report.start_time or started
        status = TestStatus.PASSED if report.status == STATUS_PASSED else TestStatus.FAILED
        settled = env.with_status(status) if env is not None else None

        def record(snapshot: StoreSnapshot) -> None:
            snapshot.put_report(report)
            if settled is not None:
                snapshot.put_environment(settled)

        self._store.update(record)
        log.info("test run finished", status=report.status, total=report.test_stats.total, failed=report.test_stats.failed)
        return RunResult(report=report, environment=settled)

    def _settle(self, env: TestEnvironment, status: TestStatus) -> None:
        settled = env.with_status(status)
        self._store.update(lambda snapshot: snapshot.put_environment(settled))

    # === Queries ===

    def get_report(self, report_id: str) -> TestReport:
        """Stored report ``report_id``.

        Raises:
            InvalidArgumentError: Empty report ID
            NotFoundError: No such report
        """
        if not report_id:
            raise InvalidArgumentError("report ID is required")
        return self._store.read().get_report(report_id)

    def list_reports(self, stage: str | None = None) -> list[TestReport]:
        """Stored reports, oldest first, optionally for one stage."""
        return self._store.read().list_reports(stage)
