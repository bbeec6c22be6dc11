# src/forgeflow/contracts/enums.py
"""Status codes and kinds used across subsystem boundaries."""

from enum import StrEnum


class TestStatus(StrEnum):
    """Lifecycle status of a test environment.

    Stored in the artifact store (testEnvironments.<id>.status).
    Transitions are append-only: an environment starts as CREATED and may
    move to PASSED or FAILED exactly once.
    """

    __test__ = False  # not a pytest test class

    CREATED = "created"
    PASSED = "passed"
    FAILED = "failed"

    @classmethod
    def can_transition(cls, old: "TestStatus", new: "TestStatus") -> bool:
        """Whether ``old -> new`` is a legal transition."""
        if old == new:
            return True
        return old is cls.CREATED and new in (cls.PASSED, cls.FAILED)


class EngineKind(StrEnum):
    """Role an engine alias is tagged with in configuration.

    Values:
        BUILDER: produces artifacts (tools: build, buildBatch)
        TESTENV: provisions test environments (tools: create, delete)
        TEST_RUNNER: runs tests against an environment (tool: run)
    """

    BUILDER = "builder"
    TESTENV = "testenv"
    TEST_RUNNER = "test-runner"


class SetupKind(StrEnum):
    """Shape of a stage's environment setup."""

    NONE = "none"
    DIRECT = "direct"
    CHAIN = "chain"
