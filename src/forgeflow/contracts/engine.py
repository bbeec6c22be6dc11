# src/forgeflow/contracts/engine.py
"""Engine references, launch commands, chains and step outcomes.

This module is a LEAF: it imports nothing from forgeflow except other
contracts, so config, resolver and orchestrators can all depend on it.

Reference syntax:
    py://<path>[@<version>]   toolchain reference (Python module / distribution)
    alias://<name>            configured alias (single engine or ordered chain)
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from forgeflow.contracts.enums import SetupKind
from forgeflow.contracts.errors import ResolutionError

TOOLCHAIN_SCHEME = "py"
ALIAS_SCHEME = "alias"
_SCHEME_SEP = "://"


@dataclass(frozen=True, slots=True)
class EngineReference:
    """Parsed engine reference.

    Attributes:
        scheme: ``py`` or ``alias``
        path: Module/package path (toolchain) or alias name
        version: Explicit version suffix, None when absent
    """

    scheme: str
    path: str
    version: str | None = None

    @property
    def is_alias(self) -> bool:
        return self.scheme == ALIAS_SCHEME

    @property
    def module(self) -> str:
        """Dotted module path (``a/b/c`` and ``a.b.c`` both give ``a.b.c``)."""
        return self.path.replace("/", ".")

    @property
    def short_name(self) -> str:
        """Last path segment, used as the executable name."""
        return self.module.rsplit(".", 1)[-1]

    @property
    def is_short(self) -> bool:
        """True when the path is a bare name without package segments."""
        return "." not in self.module

    @property
    def distribution(self) -> str:
        """Distribution name for remote fetch: first segment, ``_`` -> ``-``."""
        return self.module.split(".", 1)[0].replace("_", "-")

    def __str__(self) -> str:
        text = f"{self.scheme}{_SCHEME_SEP}{self.path}"
        if self.version is not None:
            text += f"@{self.version}"
        return text


def parse_reference(ref: str) -> EngineReference:
    """Parse an engine reference string.

    Raises:
        ResolutionError: Unprefixed, unknown scheme, or empty path/version.
    """
    scheme, sep, rest = ref.partition(_SCHEME_SEP)
    if not sep:
        raise ResolutionError(ref, f"unsupported engine reference (must start with {TOOLCHAIN_SCHEME}:// or {ALIAS_SCHEME}://)")

    if scheme == ALIAS_SCHEME:
        if not rest:
            raise ResolutionError(ref, "empty alias name after alias://")
        if "@" in rest or "/" in rest:
            raise ResolutionError(ref, "alias names cannot carry a path or version")
        return EngineReference(scheme=ALIAS_SCHEME, path=rest)

    if scheme != TOOLCHAIN_SCHEME:
        raise ResolutionError(ref, f"unsupported engine protocol {scheme!r}")

    path, at, version = rest.partition("@")
    path = path.strip("/")
    if not path:
        raise ResolutionError(ref, "empty engine path after py://")
    if at and not version:
        raise ResolutionError(ref, "empty version after '@'")
    if any(not segment for segment in path.replace("/", ".").split(".")):
        raise ResolutionError(ref, "engine path has an empty segment")
    return EngineReference(scheme=TOOLCHAIN_SCHEME, path=path, version=version or None)


@dataclass(frozen=True, slots=True)
class LaunchCommand:
    """How to start an engine process. Never started by the resolver itself."""

    command: str
    args: tuple[str, ...] = ()
    display: str = ""
    cwd: str | None = None

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]

    def __str__(self) -> str:
        return self.display or " ".join(self.argv)


@dataclass(frozen=True, slots=True)
class SubEngine:
    """One entry of an engine chain: reference plus opaque config blob.

    ``spec`` is forwarded verbatim to the sub-engine's tool call.
    """

    engine: str
    spec: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True, slots=True)
class EngineChain:
    """Ordered sub-engines of one alias. Creation runs forward, teardown in reverse."""

    alias: str
    steps: tuple[SubEngine, ...]

    def __len__(self) -> int:
        return len(self.steps)

    def reversed_steps(self) -> tuple[SubEngine, ...]:
        return tuple(reversed(self.steps))


@dataclass(frozen=True, slots=True)
class SetupSpec:
    """A stage's environment setup: nothing, one engine, or a chain."""

    kind: SetupKind
    reference: str | None = None
    chain: EngineChain | None = None

    @classmethod
    def none(cls) -> SetupSpec:
        return cls(kind=SetupKind.NONE)

    @classmethod
    def direct(cls, reference: str) -> SetupSpec:
        return cls(kind=SetupKind.DIRECT, reference=reference)

    @classmethod
    def of_chain(cls, chain: EngineChain) -> SetupSpec:
        return cls(kind=SetupKind.CHAIN, chain=chain)


@dataclass(frozen=True, slots=True)
class StepOutcome:
    """Result of one best-effort teardown step."""

    target: str
    succeeded: bool
    reason: str | None = None

    @classmethod
    def ok(cls, target: str) -> StepOutcome:
        return cls(target=target, succeeded=True)

    @classmethod
    def failed(cls, target: str, reason: str) -> StepOutcome:
        return cls(target=target, succeeded=False, reason=reason)


@dataclass
class TeardownReport:
    """Outcomes collected by the delete workflow.

    Engine teardown steps and managed-resource removals are recorded in the
    order they ran. Failures here are diagnostics only.
    """

    test_id: str
    engine_steps: list[StepOutcome] = field(default_factory=list)
    resources: list[StepOutcome] = field(default_factory=list)

    @property
    def failures(self) -> list[StepOutcome]:
        return [o for o in (*self.engine_steps, *self.resources) if not o.succeeded]

    @property
    def complete(self) -> bool:
        return not self.failures
