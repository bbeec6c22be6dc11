# src/forgeflow/contracts/errors.py
"""Error taxonomy for engine resolution, engine calls and orchestration.

Every error raised by forgeflow derives from ForgeError, so the CLI and the
server-mode dispatcher can report them uniformly. Engine call failures share
the EngineCallError base but stay distinct types: callers branch on
EngineTimeoutError vs EngineError vs ConnectError.
"""

from __future__ import annotations


class ForgeError(Exception):
    """Base class for all forgeflow errors."""


class ResolutionError(ForgeError):
    """Engine reference is malformed, unknown, or of the wrong kind."""

    def __init__(self, reference: str, reason: str) -> None:
        self.reference = reference
        self.reason = reason
        super().__init__(f"cannot resolve engine {reference!r}: {reason}")


class EngineCallError(ForgeError):
    """A single engine tool call failed.

    Attributes:
        engine: Display form of the engine (reference or command line)
        tool: Tool name that was being called
    """

    def __init__(self, engine: str, tool: str, message: str) -> None:
        self.engine = engine
        self.tool = tool
        super().__init__(message)


class ConnectError(EngineCallError):
    """Engine process could not be spawned, or the session handshake failed."""

    def __init__(self, engine: str, tool: str, reason: str) -> None:
        self.reason = reason
        super().__init__(engine, tool, f"failed to connect to engine {engine}: {reason}")


class EngineTimeoutError(EngineCallError):
    """Engine call exceeded its time bound. The child process was terminated."""

    def __init__(self, engine: str, tool: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(engine, tool, f"engine {engine} tool {tool!r} timed out after {timeout:g}s")


class EngineError(EngineCallError):
    """Remote engine reported the tool call as failed.

    ``remote_message`` carries the engine-supplied error text verbatim.
    """

    def __init__(self, engine: str, tool: str, remote_message: str) -> None:
        self.remote_message = remote_message
        super().__init__(engine, tool, f"engine {engine} tool {tool!r} failed: {remote_message}")


class RPCError(EngineCallError):
    """Protocol or transport failure after the session was established."""

    def __init__(self, engine: str, tool: str, reason: str) -> None:
        self.reason = reason
        super().__init__(engine, tool, f"engine {engine} tool {tool!r} call failed: {reason}")


class ArtifactParseError(EngineCallError):
    """Builder result is neither a single artifact nor a list of artifacts."""

    def __init__(self, engine: str, tool: str, reason: str) -> None:
        self.reason = reason
        super().__init__(engine, tool, f"could not parse artifacts from {engine}: {reason}")


class ReportParseError(EngineCallError):
    """Test runner result is not a test report."""

    def __init__(self, engine: str, tool: str, reason: str) -> None:
        self.reason = reason
        super().__init__(engine, tool, f"could not parse test report from {engine}: {reason}")


class PersistenceError(ForgeError):
    """Artifact store could not be read, parsed or written."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"artifact store {path}: {reason}")


class NotFoundError(ForgeError):
    """Unknown stage, alias, artifact, test environment or test report."""

    def __init__(self, kind: str, key: str) -> None:
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class InvalidArgumentError(ForgeError):
    """A required input is missing or invalid."""


class StepFailedError(ForgeError):
    """A step of an ordered engine sequence failed.

    Wraps the underlying error (available as ``__cause__`` and ``cause``) and
    names the step, so callers see which sub-engine aborted the sequence.
    ``step`` is the 1-based position of that engine.
    """

    def __init__(self, engine: str, step: int, cause: ForgeError) -> None:
        self.engine = engine
        self.step = step
        self.cause = cause
        super().__init__(f"step {step} ({engine}) failed: {cause}")
