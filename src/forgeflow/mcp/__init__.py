# src/forgeflow/mcp/__init__.py
"""MCP server mode for forgeflow.

Exposes the project workflows as tools:
- create: create a test environment for a stage
- delete: tear a test environment down
- get: read one stored test environment
- list: list stored test environments
- build: build artifacts and record them

The server module (and the MCP server stack behind it) is imported only
when one of these functions is called.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from mcp.server import Server

    from forgeflow.core.config import ForgeSettings


def create_server(settings: ForgeSettings, **kwargs: Any) -> Server:
    from forgeflow.mcp.server import create_server as _create_server

    return _create_server(settings, **kwargs)


def serve(settings: ForgeSettings) -> None:
    from forgeflow.mcp.server import serve as _serve

    _serve(settings)


__all__ = ["create_server", "serve"]
