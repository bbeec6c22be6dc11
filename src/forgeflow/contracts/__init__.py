# src/forgeflow/contracts/__init__.py
"""Shared contracts: enums, errors, engine references and stored records.

Leaf package. Nothing in here imports from core, engines or orchestrator.
"""

from forgeflow.contracts.document import Document
from forgeflow.contracts.engine import (
    EngineChain,
    EngineReference,
    LaunchCommand,
    SetupSpec,
    StepOutcome,
    SubEngine,
    TeardownReport,
    parse_reference,
)
from forgeflow.contracts.enums import EngineKind, SetupKind, TestStatus
from forgeflow.contracts.errors import (
    ArtifactParseError,
    ConnectError,
    EngineCallError,
    EngineError,
    EngineTimeoutError,
    ForgeError,
    InvalidArgumentError,
    NotFoundError,
    PersistenceError,
    ResolutionError,
    RPCError,
    StepFailedError,
)
from forgeflow.contracts.records import Artifact, TestEnvironment, TestReport, TestStats

__all__ = [
    "Artifact",
    "ArtifactParseError",
    "ConnectError",
    "Document",
    "EngineCallError",
    "EngineChain",
    "EngineError",
    "EngineKind",
    "EngineReference",
    "EngineTimeoutError",
    "ForgeError",
    "InvalidArgumentError",
    "LaunchCommand",
    "NotFoundError",
    "PersistenceError",
    "RPCError",
    "ResolutionError",
    "SetupKind",
    "SetupSpec",
    "StepFailedError",
    "StepOutcome",
    "SubEngine",
    "TeardownReport",
    "TestEnvironment",
    "TestReport",
    "TestStats",
    "TestStatus",
    "parse_reference",
]
