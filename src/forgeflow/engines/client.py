# src/forgeflow/engines/client.py
"""RPC Process Client: one engine process, one session, one tool call.

The engine is spawned with ``--mcp`` appended to its command line, which
switches it into MCP server mode. Its stdin/stdout carry JSON-RPC frames
only; its stderr is forwarded to our own diagnostic stream. The handshake
and the single tool call run under one deadline. When the deadline passes
the call is cancelled and leaving the stdio context terminates the child
(stdin close, then SIGTERM, then SIGKILL), so no engine outlives its caller.

Sessions are never reused: every call spawns a fresh process.
"""

from __future__ import annotations

import functools
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, TextIO

import anyio
from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.shared.exceptions import McpError
from mcp.types import CallToolResult, Implementation, TextContent

from forgeflow import __version__
from forgeflow.contracts.document import Document
from forgeflow.contracts.engine import LaunchCommand
from forgeflow.contracts.errors import (
    ConnectError,
    EngineCallError,
    EngineError,
    EngineTimeoutError,
    RPCError,
)
from forgeflow.core.logging import get_logger

logger = get_logger(__name__)

SERVER_MODE_FLAG = "--mcp"

# Six minutes: engines provisioning clusters or registries run helm and
# image pushes with their own multi-minute timeouts.
DEFAULT_TIMEOUT_SECONDS = 360.0


def _leaf(exc: BaseException) -> BaseException:
    """First non-group exception inside (possibly nested) exception groups."""
    while isinstance(exc, BaseExceptionGroup) and exc.exceptions:
        exc = exc.exceptions[0]
    return exc


def _describe(exc: BaseException) -> str:
    leaf = _leaf(exc)
    text = str(leaf)
    return f"{type(leaf).__name__}: {text}" if text else type(leaf).__name__


@dataclass
class _CallState:
    """Progress of one call, shared between the session body and its cleanup."""

    phase: str = "spawn"
    result: CallToolResult | None = None
    failure: EngineCallError | None = None
    cause: BaseException | None = None


class EngineClient:
    """Calls tools on engine processes.

    Args:
        timeout: Default bound in seconds for handshake plus tool call
        errlog: Stream receiving the engine's stderr (default: sys.stderr
            at call time; must have a real file descriptor)
        client_name: Name announced in the MCP handshake
    """

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        errlog: TextIO | None = None,
        client_name: str = "forgeflow",
    ) -> None:
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        self._timeout = timeout
        self._errlog = errlog
        self._client_info = Implementation(name=client_name, version=__version__)

    @property
    def timeout(self) -> float:
        return self._timeout

    def call(
        self,
        command: LaunchCommand,
        tool: str,
        arguments: Mapping[str, Any],
        *,
        timeout: float | None = None,
    ) -> Document:
        """Blocking form of ``acall``. Must not be called from a running event loop."""
        return anyio.run(functools.partial(self.acall, command, tool, arguments, timeout=timeout))

    async def acall(
        self,
        command: LaunchCommand,
        tool: str,
        arguments: Mapping[str, Any],
        *,
        timeout: float | None = None,
    ) -> Document:
        """Spawn ``command``, call ``tool`` once and return its structured output.

        Raises:
            ConnectError: Spawn or handshake failed
            EngineTimeoutError: Deadline passed; the child has been terminated
            EngineError: Engine reported the call as failed
            RPCError: Any other failure during the call
        """
        engine = str(command)
        bound = self._timeout if timeout is None else timeout
        params = StdioServerParameters(
            command=command.command,
            args=[*command.args, SERVER_MODE_FLAG],
            env=dict(os.environ),
            cwd=command.cwd,
        )
        errlog = self._errlog if self._errlog is not None else sys.stderr
        state = _CallState()

        logger.debug("calling engine", engine=engine, tool=tool, argv=command.argv)
        try:
            async with stdio_client(params, errlog=errlog) as (read_stream, write_stream):
                state.phase = "connect"
                async with ClientSession(read_stream, write_stream, client_info=self._client_info) as session:
                    await self._run_session(session, engine, tool, dict(arguments), bound, state)
        except Exception as exc:
            # Spawn failures, transport crashes, and errors raised while the
            # stdio context tears the child down (often wrapped in groups)
            if state.failure is None:
                state.failure = self._classify(engine, tool, state.phase, exc)
                state.cause = exc
            else:
                logger.debug("engine session teardown error", engine=engine, error=_describe(exc))

        if state.failure is not None:
            raise state.failure from state.cause
        if state.result is None:
            raise RPCError(engine, tool, "session ended without a result")
        return self._unwrap(engine, tool, state.result)

    async def _run_session(
        self,
        session: ClientSession,
        engine: str,
        tool: str,
        arguments: dict[str, Any],
        bound: float,
        state: _CallState,
    ) -> None:
        try:
            with anyio.fail_after(bound):
                await session.initialize()
                state.phase = "call"
                state.result = await session.call_tool(tool, arguments)
        except TimeoutError as e:
            state.failure = EngineTimeoutError(engine, tool, bound)
            state.cause = e
        except (McpError, anyio.ClosedResourceError, anyio.BrokenResourceError, anyio.EndOfStream) as e:
            state.failure = self._classify(engine, tool, state.phase, e)
            state.cause = e

    @staticmethod
    def _classify(engine: str, tool: str, phase: str, exc: BaseException) -> EngineCallError:
        leaf = _leaf(exc)
        if isinstance(leaf, EngineCallError):
            return leaf
        if isinstance(leaf, TimeoutError):
            return RPCError(engine, tool, f"transport timed out: {_describe(leaf)}")
        if phase in ("spawn", "connect"):
            return ConnectError(engine, tool, _describe(leaf))
        return RPCError(engine, tool, _describe(leaf))

    @staticmethod
    def _unwrap(engine: str, tool: str, result: CallToolResult) -> Document:
        if result.isError:
            message = "unknown error"
            if result.content and isinstance(result.content[0], TextContent):
                message = result.content[0].text
            raise EngineError(engine, tool, message)
        return Document(result.structuredContent)
