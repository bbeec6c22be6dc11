# src/forgeflow/engines/__init__.py
"""Engine resolution and invocation.

- EngineResolver: engine reference -> launch command (never starts a process)
- EngineClient: spawn an engine in server mode and call one tool on it

Example:
    from forgeflow.core import load_settings
    from forgeflow.engines import EngineClient, EngineResolver

    settings = load_settings()
    resolver = EngineResolver(settings)
    client = EngineClient(timeout=settings.engine_timeout_seconds)

    command = resolver.resolve("py://testenv_kind")
    output = client.call(command, "create", {"stage": "integration"})
"""

from forgeflow.engines.client import DEFAULT_TIMEOUT_SECONDS, SERVER_MODE_FLAG, EngineClient
from forgeflow.engines.resolver import EngineResolver, module_exists

__all__ = [
    "DEFAULT_TIMEOUT_SECONDS",
    "SERVER_MODE_FLAG",
    "EngineClient",
    "EngineResolver",
    "module_exists",
]
