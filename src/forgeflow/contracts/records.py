# src/forgeflow/contracts/records.py
"""Records persisted in the artifact store.

Field names are snake_case in Python and camelCase on disk, so the store
file stays compatible with engines and tools that read it directly.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from forgeflow.contracts.document import Document
from forgeflow.contracts.enums import TestStatus
from forgeflow.contracts.errors import InvalidArgumentError

_RECORD_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def utc_now() -> datetime:
    return datetime.now(UTC)


class Artifact(BaseModel):
    """A build output recorded in the store.

    Attributes:
        name: Artifact name (matches the build spec name)
        type: Kind, e.g. "binary" or "container"
        location: URL or file:// path
        timestamp: RFC 3339 build time
        version: Content hash or commit, optional
    """

    model_config = _RECORD_CONFIG

    name: str = Field(min_length=1)
    type: str = ""
    location: str = ""
    timestamp: str = ""
    version: str = ""


class TestStats(BaseModel):
    model_config = _RECORD_CONFIG

    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0


class Coverage(BaseModel):
    model_config = _RECORD_CONFIG

    percentage: float = 0.0
    file_path: str = ""


class TestReport(BaseModel):
    """Result of one test run, as returned by a test runner engine.

    When a stage has several runners their reports are merged into one
    (see ``forgeflow.orchestrator.runner.merge_test_reports``).
    """

    __test__ = False

    model_config = _RECORD_CONFIG

    id: str
    stage: str
    status: str
    start_time: datetime | None = None
    duration: float = 0.0
    test_stats: TestStats = Field(default_factory=TestStats)
    coverage: Coverage = Field(default_factory=Coverage)
    artifact_files: list[str] = Field(default_factory=list)
    output_path: str = ""
    error_message: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class TestEnvironment(BaseModel):
    """One provisioned test environment.

    Every managed resource added while creating the environment is listed in
    ``managed_resources`` before the creating step returns, so even a
    partially set-up environment can be torn down.
    """

    __test__ = False

    model_config = _RECORD_CONFIG

    id: str
    name: str
    status: TestStatus = TestStatus.CREATED
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    tmp_dir: str = ""
    files: dict[str, str] = Field(default_factory=dict)
    metadata: dict[str, str] = Field(default_factory=dict)
    managed_resources: list[str] = Field(default_factory=list)

    def merge_engine_output(self, output: Document) -> dict[str, str]:
        """Merge an engine's ``files``, ``metadata`` and ``managedResources``.

        Returns:
            The metadata entries merged by this call, for the caller to thread
            into the next chain step.
        """
        files = output.get_str_map("files")
        if files:
            self.files.update(files)
        metadata = output.get_str_map("metadata") or {}
        self.metadata.update(metadata)
        resources = output.get_str_list("managedResources")
        if resources:
            self.managed_resources.extend(resources)
        return metadata

    def with_status(self, status: TestStatus) -> TestEnvironment:
        """Copy with a new status; rejects transitions that go backwards."""
        if not TestStatus.can_transition(self.status, status):
            raise InvalidArgumentError(f"test environment {self.id}: cannot move from {self.status} to {status}")
        return self.model_copy(update={"status": status, "updated_at": utc_now()})
