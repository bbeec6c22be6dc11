# src/forgeflow/orchestrator/testenv.py
"""Stage Orchestrator: create and delete test environments.

Create is all-or-nothing. The first failing chain step aborts the chain;
the working directory is removed and nothing reaches the store. Delete is
best-effort. Every engine teardown step and every managed-resource removal
runs regardless of earlier failures, outcomes are collected into a
TeardownReport, and the only error surfaced is a failure to drop the
record from the store.
"""

from __future__ import annotations

import copy
import shutil
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

from structlog.stdlib import BoundLogger

from forgeflow.contracts.engine import SetupSpec, StepOutcome, TeardownReport
from forgeflow.contracts.enums import EngineKind, SetupKind
from forgeflow.contracts.errors import (
    ForgeError,
    InvalidArgumentError,
    NotFoundError,
    PersistenceError,
    ResolutionError,
    StepFailedError,
)
from forgeflow.contracts.records import TestEnvironment, utc_now
from forgeflow.core.config import ForgeSettings
from forgeflow.core.identifiers import generate_test_id
from forgeflow.core.logging import get_logger
from forgeflow.core.store import ArtifactStore, StoreSnapshot
from forgeflow.engines.resolver import EngineResolver
from forgeflow.orchestrator.types import EngineCaller

logger = get_logger(__name__)

CREATE_TOOL = "create"
DELETE_TOOL = "delete"

# Bound on regenerating a test ID that collides with a stored record or an
# existing working directory
MAX_ID_ATTEMPTS = 5

# Managed resources carrying a scheme are engine-side identifiers, not paths
_URI_MARKER = "://"


class StageOrchestrator:
    """Runs the create/delete workflows for configured test stages.

    Holds no per-call state: one instance can serve concurrent requests.

    Args:
        settings: Project settings (stages, report engines, directories)
        resolver: Shared engine resolver
        caller: Engine caller (usually an EngineClient)
        store: Artifact store holding test environment records
        clock: Time source override for tests
    """

    def __init__(
        self,
        settings: ForgeSettings,
        *,
        resolver: EngineResolver,
        caller: EngineCaller,
        store: ArtifactStore,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings
        self._resolver = resolver
        self._caller = caller
        self._store = store
        self._clock = clock or utc_now

    @property
    def tmp_root(self) -> Path:
        """Directory holding one working directory per test environment."""
        tmp_dir = Path(self._settings.directories.tmp_dir)
        if tmp_dir.is_absolute():
            return tmp_dir
        return self._resolver.project_root / tmp_dir

    # === Create ===

    def create(self, stage: str) -> TestEnvironment:
        """Provision a new test environment for ``stage``.

        Raises:
            InvalidArgumentError: Empty stage name
            NotFoundError: Stage not configured
            ResolutionError: Stage setup references an unknown alias
            StepFailedError: An environment engine failed; wraps the cause
            PersistenceError: Working directory or store write failed
        """
        if not stage:
            raise InvalidArgumentError("stage name is required")
        stage_settings = self._settings.get_stage(stage)
        if stage_settings is None:
            raise NotFoundError("test stage", stage)
        setup = self._resolver.setup_for(stage_settings)

        test_id, work_dir = self._allocate(stage, self._store.read())
        now = self._clock()
        env = TestEnvironment(
            id=test_id,
            name=stage,
            created_at=now,
            updated_at=now,
            tmp_dir=str(work_dir),
            managed_resources=[str(work_dir)],
        )
        log = logger.bind(test_id=test_id, stage=stage)

        try:
            self._provision(env, setup, log)
        except Exception:
            self._discard(work_dir, log)
            raise

        try:
            self._store.update(lambda snapshot: snapshot.put_environment(env))
        except PersistenceError:
            self._discard(work_dir, log)
            raise

        log.info(
            "test environment created",
            setup=str(setup.kind),
            files=len(env.files),
            managed_resources=len(env.managed_resources),
        )
        return env

    def _allocate(self, stage: str, snapshot: StoreSnapshot) -> tuple[str, Path]:
        root = self.tmp_root
        try:
            root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(str(root), f"cannot create working directory root: {e}") from e

        for _ in range(MAX_ID_ATTEMPTS):
            test_id = generate_test_id(stage, now=self._clock)
            if test_id in snapshot.test_environments:
                logger.debug("test ID already stored, regenerating", test_id=test_id)
                continue
            work_dir = root / test_id
            try:
                work_dir.mkdir()
            except FileExistsError:
                logger.debug("working directory exists, regenerating", test_id=test_id)
                continue
            except OSError as e:
                raise PersistenceError(str(work_dir), f"cannot create working directory: {e}") from e
            return test_id, work_dir

        raise PersistenceError(str(root), f"no unique test ID for stage {stage!r} after {MAX_ID_ATTEMPTS} attempts")

    def _provision(self, env: TestEnvironment, setup: SetupSpec, log: BoundLogger) -> None:
        if setup.kind is SetupKind.NONE:
            log.info("no environment engine configured, environment is bare")
            return

        if setup.kind is SetupKind.DIRECT:
            assert setup.reference is not None
            reference = setup.reference
            arguments: dict[str, Any] = {"stage": env.name}
            if not self._settings.is_report_engine(reference):
                arguments["testID"] = env.id
                arguments["tmpDir"] = env.tmp_dir
            try:
                command = self._resolver.resolve(reference, kind=EngineKind.TESTENV)
                output = self._caller.call(command, CREATE_TOOL, arguments)
            except ForgeError as e:
                raise StepFailedError(reference, 1, e) from e
            env.merge_engine_output(output)
            log.debug("environment engine finished", engine=reference)
            return

        assert setup.chain is not None
        accumulated: dict[str, str] = {}
        for index, step in enumerate(setup.chain.steps, start=1):
            arguments = {
                "testID": env.id,
                "stage": env.name,
                "tmpDir": env.tmp_dir,
                "metadata": dict(accumulated),
            }
            if step.spec:
                arguments["spec"] = copy.deepcopy(dict(step.spec))
            try:
                command = self._resolver.resolve(step.engine, kind=EngineKind.TESTENV)
                output = self._caller.call(command, CREATE_TOOL, arguments)
            except ForgeError as e:
                log.warning("environment chain step failed", step=index, engine=step.engine, error=str(e))
                raise StepFailedError(step.engine, index, e) from e
            accumulated.update(env.merge_engine_output(output))
            log.debug("environment chain step finished", step=index, of=len(setup.chain), engine=step.engine)

    @staticmethod
    def _discard(work_dir: Path, log: BoundLogger) -> None:
        try:
            shutil.rmtree(work_dir)
        except FileNotFoundError:
            pass
        except OSError as e:
            log.warning("failed to remove working directory", path=str(work_dir), error=str(e))

    # === Delete ===

    def delete(self, test_id: str) -> TeardownReport:
        """Tear down ``test_id`` and drop its record.

        Engine and resource failures are collected in the returned report,
        never raised.

        Raises:
            InvalidArgumentError: Empty test ID
            NotFoundError: No such test environment
            PersistenceError: Store read or write failed
        """
        if not test_id:
            raise InvalidArgumentError("test ID is required")
        env = self._store.read().get_environment(test_id)
        log = logger.bind(test_id=test_id, stage=env.name)
        report = TeardownReport(test_id=test_id)

        stage_settings = self._settings.get_stage(env.name)
        if stage_settings is None:
            log.warning("stage no longer configured, skipping engine teardown")
        else:
            try:
                setup = self._resolver.setup_for(stage_settings)
            except ResolutionError as e:
                report.engine_steps.append(StepOutcome.failed(stage_settings.testenv or env.name, str(e)))
            else:
                self._teardown_engines(env, setup, report)

        for resource in env.managed_resources:
            report.resources.append(self._remove_resource(resource))

        self._log_report(report, log)

        try:
            self._store.update(lambda snapshot: snapshot.delete_environment(test_id))
        except NotFoundError:
            log.warning("test environment record already gone")
        return report

    def _teardown_engines(self, env: TestEnvironment, setup: SetupSpec, report: TeardownReport) -> None:
        if setup.kind is SetupKind.NONE:
            return

        if setup.kind is SetupKind.DIRECT:
            assert setup.reference is not None
            reference = setup.reference
            id_key = "reportID" if self._settings.is_report_engine(reference) else "testID"
            report.engine_steps.append(self._teardown_step(reference, {id_key: env.id}, kind=EngineKind.TESTENV))
            return

        assert setup.chain is not None
        for step in setup.chain.reversed_steps():
            arguments = {"testID": env.id, "metadata": dict(env.metadata)}
            report.engine_steps.append(self._teardown_step(step.engine, arguments, kind=EngineKind.TESTENV))

    def _teardown_step(
        self,
        reference: str,
        arguments: dict[str, Any],
        *,
        kind: EngineKind,
    ) -> StepOutcome:
        try:
            command = self._resolver.resolve(reference, kind=kind)
            self._caller.call(command, DELETE_TOOL, arguments)
        except ForgeError as e:
            return StepOutcome.failed(reference, str(e))
        return StepOutcome.ok(reference)

    @staticmethod
    def _remove_resource(resource: str) -> StepOutcome:
        if not resource or _URI_MARKER in resource:
            return StepOutcome(target=resource, succeeded=True, reason="not a filesystem path, skipped")
        path = Path(resource)
        try:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink(missing_ok=True)
        except FileNotFoundError:
            pass
        except OSError as e:
            return StepOutcome.failed(resource, str(e))
        return StepOutcome.ok(resource)

    @staticmethod
    def _log_report(report: TeardownReport, log: BoundLogger) -> None:
        for outcome in report.engine_steps:
            if outcome.succeeded:
                log.debug("engine teardown step succeeded", engine=outcome.target)
            else:
                log.warning("engine teardown step failed", engine=outcome.target, error=outcome.reason)
        for outcome in report.resources:
            if outcome.succeeded:
                log.debug("managed resource removed", resource=outcome.target, note=outcome.reason)
            else:
                log.warning("failed to remove managed resource", resource=outcome.target, error=outcome.reason)
        log.info(
            "test environment teardown finished",
            engine_steps=len(report.engine_steps),
            resources=len(report.resources),
            failures=len(report.failures),
        )

    # === Queries ===

    def get(self, test_id: str) -> TestEnvironment:
        """Stored environment ``test_id``.

        Raises:
            InvalidArgumentError: Empty test ID
            NotFoundError: No such test environment
        """
        if not test_id:
            raise InvalidArgumentError("test ID is required")
        return self._store.read().get_environment(test_id)

    def list_environments(self, stage: str | None = None) -> list[TestEnvironment]:
        """Stored environments, oldest first, optionally for one stage."""
        return self._store.read().list_environments(stage)
