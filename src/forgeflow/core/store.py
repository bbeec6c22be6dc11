# src/forgeflow/core/store.py
"""Artifact store: durable record of artifacts, test environments and reports.

The store is a single YAML file. Every change goes through
``ArtifactStore.update()``, which holds a per-path lock across
read -> mutate -> write and replaces the file atomically, so concurrent
orchestrations in one process never lose each other's updates.

Build artifacts are pruned on every write: only the three most recent per
type+name are kept. Test environments and reports are never pruned.
"""

from __future__ import annotations

import os
import tempfile
import threading
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from forgeflow.contracts.errors import NotFoundError, PersistenceError
from forgeflow.contracts.records import Artifact, TestEnvironment, TestReport, utc_now
from forgeflow.core.logging import get_logger

logger = get_logger(__name__)

STORE_VERSION = "1.0"
DEFAULT_KEEP_ARTIFACTS = 3

T = TypeVar("T")


def _parse_timestamp(value: str) -> datetime | None:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class StoreSnapshot(BaseModel):
    """In-memory contents of the store file."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    version: str = STORE_VERSION
    last_updated: datetime = Field(default_factory=utc_now)
    artifacts: list[Artifact] = Field(default_factory=list)
    test_environments: dict[str, TestEnvironment] = Field(default_factory=dict)
    test_reports: dict[str, TestReport] = Field(default_factory=dict)

    def touch(self) -> None:
        self.last_updated = utc_now()

    # === Artifacts ===

    def add_or_update_artifact(self, artifact: Artifact) -> None:
        """Replace an artifact with the same name, type and version, else append."""
        for i, existing in enumerate(self.artifacts):
            if (existing.name, existing.type, existing.version) == (artifact.name, artifact.type, artifact.version):
                self.artifacts[i] = artifact
                break
        else:
            self.artifacts.append(artifact)
        self.touch()

    def latest_artifact(self, name: str) -> Artifact:
        """Most recent artifact named ``name``. Invalid timestamps are skipped."""
        latest: tuple[datetime, Artifact] | None = None
        for artifact in self.artifacts:
            if artifact.name != name:
                continue
            ts = _parse_timestamp(artifact.timestamp)
            if ts is None:
                continue
            if latest is None or ts > latest[0]:
                latest = (ts, artifact)
        if latest is None:
            raise NotFoundError("artifact", name)
        return latest[1]

    def artifacts_by_type(self, artifact_type: str) -> list[Artifact]:
        return [a for a in self.artifacts if a.type == artifact_type]

    def prune_artifacts(self, keep: int = DEFAULT_KEEP_ARTIFACTS) -> None:
        """Keep only the ``keep`` newest artifacts per type+name.

        Artifacts with unparsable timestamps sort as oldest.
        """
        groups: dict[tuple[str, str], list[Artifact]] = defaultdict(list)
        for artifact in self.artifacts:
            groups[(artifact.type, artifact.name)].append(artifact)

        def sort_key(artifact: Artifact) -> tuple[int, float]:
            ts = _parse_timestamp(artifact.timestamp)
            return (0, 0.0) if ts is None else (1, ts.timestamp())

        kept: list[Artifact] = []
        for members in groups.values():
            members.sort(key=sort_key, reverse=True)
            kept.extend(members[:keep])
        self.artifacts = kept

    # === Test environments ===

    def put_environment(self, env: TestEnvironment) -> None:
        env.updated_at = utc_now()
        self.test_environments[env.id] = env
        self.touch()

    def get_environment(self, test_id: str) -> TestEnvironment:
        try:
            return self.test_environments[test_id]
        except KeyError:
            raise NotFoundError("test environment", test_id) from None

    def list_environments(self, stage: str | None = None) -> list[TestEnvironment]:
        envs = [env for env in self.test_environments.values() if stage is None or env.name == stage]
        return sorted(envs, key=lambda env: env.created_at)

    def delete_environment(self, test_id: str) -> None:
        if test_id not in self.test_environments:
            raise NotFoundError("test environment", test_id)
        del self.test_environments[test_id]
        self.touch()

    # === Test reports ===

    def put_report(self, report: TestReport) -> None:
        report.updated_at = utc_now()
        self.test_reports[report.id] = report
        self.touch()

    def get_report(self, report_id: str) -> TestReport:
        try:
            return self.test_reports[report_id]
        except KeyError:
            raise NotFoundError("test report", report_id) from None

    def list_reports(self, stage: str | None = None) -> list[TestReport]:
        reports = [r for r in self.test_reports.values() if stage is None or r.stage == stage]
        return sorted(reports, key=lambda r: r.created_at)

    def delete_report(self, report_id: str) -> None:
        if report_id not in self.test_reports:
            raise NotFoundError("test report", report_id)
        del self.test_reports[report_id]
        self.touch()


# One lock per store file, shared by every ArtifactStore instance in the process
_PATH_LOCKS: dict[str, threading.Lock] = {}
_PATH_LOCKS_GUARD = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    key = str(path.resolve())
    with _PATH_LOCKS_GUARD:
        lock = _PATH_LOCKS.get(key)
        if lock is None:
            lock = threading.Lock()
            _PATH_LOCKS[key] = lock
        return lock


class ArtifactStore:
    """Read/update access to the YAML store file at ``path``."""

    def __init__(self, path: str | Path, *, keep_artifacts: int = DEFAULT_KEEP_ARTIFACTS) -> None:
        self._path = Path(path)
        self._keep_artifacts = keep_artifacts

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> StoreSnapshot:
        """Current contents. A missing file reads as an empty store.

        Raises:
            PersistenceError: File exists but cannot be read or parsed
        """
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return StoreSnapshot()
        except OSError as e:
            raise PersistenceError(str(self._path), f"read failed: {e}") from e

        try:
            data: Any = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise PersistenceError(str(self._path), f"invalid YAML: {e}") from e

        if data is None:
            return StoreSnapshot()
        if not isinstance(data, dict):
            raise PersistenceError(str(self._path), f"expected a mapping, got {type(data).__name__}")
        try:
            return StoreSnapshot.model_validate(data)
        except ValidationError as e:
            raise PersistenceError(str(self._path), f"invalid store contents: {e}") from e

    def update(self, mutator: Callable[[StoreSnapshot], T]) -> T:
        """Atomically read, apply ``mutator`` and write the store.

        Errors raised by ``mutator`` (e.g. NotFoundError) propagate unchanged
        and nothing is written.

        Raises:
            PersistenceError: Read or write failed
        """
        with _lock_for(self._path):
            snapshot = self.read()
            result = mutator(snapshot)
            self._write(snapshot)
            return result

    def _write(self, snapshot: StoreSnapshot) -> None:
        snapshot.prune_artifacts(self._keep_artifacts)
        payload = snapshot.model_dump(mode="json", by_alias=True)
        try:
            text = yaml.safe_dump(payload, sort_keys=False)
        except yaml.YAMLError as e:
            raise PersistenceError(str(self._path), f"serialization failed: {e}") from e

        tmp_name: str | None = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self._path.name}.", dir=self._path.parent)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(text)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self._path)
            tmp_name = None
        except OSError as e:
            raise PersistenceError(str(self._path), f"write failed: {e}") from e
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)

        logger.debug("artifact store written", path=str(self._path))
