# src/forgeflow/mcp/server.py
"""Server mode: forgeflow itself as an MCP engine.

``forgeflow --mcp`` serves the create/delete/get/list/build/run workflows
as tools over stdio, so other orchestrators (or forgeflow chains) can drive a
project the same way they drive any engine. stdout carries protocol frames
only; all logging goes to stderr.

This file contains only MCP protocol machinery: argument validation, tool
registration and the dispatcher. The workflows live in
``forgeflow.orchestrator``.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass
from typing import Any

import anyio
import anyio.to_thread
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool

from forgeflow import __version__
from forgeflow.core.config import ForgeSettings
from forgeflow.core.logging import get_logger, log_context
from forgeflow.orchestrator.factory import Orchestrators, build_orchestrators

logger = get_logger(__name__)

SERVER_NAME = "forgeflow"


# ══════════════════════════════════════════════════════════════════════════════
# MCP Argument Validation
#
# The MCP SDK delivers tool arguments as dict[str, Any] straight from the
# client. Types are checked here, before anything reaches an orchestrator.
# Undeclared keys are dropped: parent orchestrators send extra context
# (tmpDir, metadata, spec) that these tools do not use.
# ══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class _ArgSpec:
    """Declarative schema for one MCP tool's arguments."""

    required_str: tuple[str, ...] = ()
    optional_str: tuple[str, ...] = ()  # defaults to None


_TOOL_ARGS: dict[str, _ArgSpec] = {
    "create": _ArgSpec(required_str=("stage",)),
    "delete": _ArgSpec(required_str=("testID",)),
    "get": _ArgSpec(required_str=("testID",)),
    "list": _ArgSpec(optional_str=("stage",)),
    "build": _ArgSpec(optional_str=("name", "artifactName")),
    "run": _ArgSpec(required_str=("stage",), optional_str=("testID",)),
}


def _validate_tool_args(name: str, arguments: dict[str, Any]) -> dict[str, Any]:
    """Validate MCP tool arguments.

    Returns a new dict with only the declared fields.

    Raises:
        ValueError: Missing required field or unknown tool.
        TypeError: Field has wrong type.
    """
    spec = _TOOL_ARGS.get(name)
    if spec is None:
        raise ValueError(f"Unknown tool: {name}")

    validated: dict[str, Any] = {}

    for fname in spec.required_str:
        if fname not in arguments:
            raise ValueError(f"'{name}' requires '{fname}'")
        val = arguments[fname]
        if not isinstance(val, str):
            raise TypeError(f"'{name}': '{fname}' must be string, got {type(val).__name__}")
        validated[fname] = val

    for fname in spec.optional_str:
        val = arguments.get(fname)
        if val is not None and not isinstance(val, str):
            raise TypeError(f"'{name}': '{fname}' must be string or null, got {type(val).__name__}")
        validated[fname] = val

    return validated


def _dump(model: Any) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)  # type: ignore[no-any-return]


def _dispatch(components: Orchestrators, name: str, args: dict[str, Any]) -> dict[str, Any]:
    """Run one validated tool call. Blocking; called from a worker thread."""
    if name == "create":
        env = components.stages.create(args["stage"])
        return {"testID": env.id, "testEnvironment": _dump(env)}
    if name == "delete":
        report = components.stages.delete(args["testID"])
        return {
            "testID": report.test_id,
            "complete": report.complete,
            "failures": [{"target": o.target, "reason": o.reason} for o in report.failures],
        }
    if name == "get":
        return _dump(components.stages.get(args["testID"]))
    if name == "list":
        envs = components.stages.list_environments(args["stage"])
        return {"testEnvironments": [_dump(env) for env in envs]}
    if name == "build":
        artifacts = components.builds.build(args["name"] or args["artifactName"])
        return {"artifacts": [_dump(a) for a in artifacts]}
    if name == "run":
        result = components.runs.run(args["stage"], args["testID"])
        env = result.environment
        return {
            "testID": env.id if env is not None else None,
            "status": result.report.status,
            "testReport": _dump(result.report),
        }
    # _validate_tool_args already rejects unknown tools
    raise ValueError(f"Unknown tool: {name}")


def _tool_definitions() -> list[Tool]:
    return [
        Tool(
            name="create",
            description="Create a test environment for a stage; returns its test ID",
            inputSchema={
                "type": "object",
                "properties": {
                    "stage": {"type": "string", "description": "Test stage name from forge.yaml"},
                },
                "required": ["stage"],
            },
        ),
        Tool(
            name="delete",
            description="Tear down a test environment (best effort) and remove its record",
            inputSchema={
                "type": "object",
                "properties": {
                    "testID": {"type": "string", "description": "Test environment ID"},
                },
                "required": ["testID"],
            },
        ),
        Tool(
            name="get",
            description="Get a stored test environment",
            inputSchema={
                "type": "object",
                "properties": {
                    "testID": {"type": "string", "description": "Test environment ID"},
                },
                "required": ["testID"],
            },
        ),
        Tool(
            name="list",
            description="List stored test environments, oldest first",
            inputSchema={
                "type": "object",
                "properties": {
                    "stage": {"type": "string", "description": "Only environments of this stage"},
                },
            },
        ),
        Tool(
            name="build",
            description="Build all configured artifacts, or only the named one, and record them",
            inputSchema={
                "type": "object",
                "properties": {
                    "name": {"type": "string", "description": "Artifact name to build"},
                    "artifactName": {"type": "string", "description": "Alternative to name"},
                },
            },
        ),
        Tool(
            name="run",
            description=(
                "Run a stage's test runners, record the report and mark the environment passed or failed. "
                "Creates an environment first when testID is omitted"
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "stage": {"type": "string", "description": "Test stage name from forge.yaml"},
                    "testID": {"type": "string", "description": "Existing test environment to run against"},
                },
                "required": ["stage"],
            },
        ),
    ]


def create_server(settings: ForgeSettings, *, orchestrators: Orchestrators | None = None) -> Server:
    """Create the MCP server exposing forgeflow's workflows.

    Args:
        settings: Project settings
        orchestrators: Pre-built orchestrators (default: built from settings)

    Returns:
        Configured MCP Server
    """
    server: Server = Server(SERVER_NAME, version=__version__)
    components = orchestrators if orchestrators is not None else build_orchestrators(settings)

    @server.list_tools()  # type: ignore[misc, no-untyped-call, untyped-decorator]  # MCP SDK decorators lack type stubs
    async def list_tools() -> list[Tool]:
        return _tool_definitions()

    @server.call_tool()  # type: ignore[misc, untyped-decorator]  # MCP SDK decorators lack type stubs
    async def call_tool(name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Validate, then run the workflow off the event loop.

        Validation and workflow errors propagate; the SDK turns them into
        isError results carrying the error text.
        """
        args = _validate_tool_args(name, arguments or {})
        with log_context(tool=name):
            logger.info("tool call")
            return await anyio.to_thread.run_sync(functools.partial(_dispatch, components, name, args))

    return server


async def run_server(settings: ForgeSettings, *, orchestrators: Orchestrators | None = None) -> None:
    """Run the MCP server with stdio transport."""
    server = create_server(settings, orchestrators=orchestrators)
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


def serve(settings: ForgeSettings) -> None:
    """Blocking entry point used by ``forgeflow --mcp``."""
    anyio.run(functools.partial(run_server, settings))
