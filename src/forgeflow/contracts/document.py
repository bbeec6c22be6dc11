# src/forgeflow/contracts/document.py
"""Untyped engine result documents with fail-closed accessors.

Engines return arbitrary JSON-like structured content. The orchestrator
does not know any engine's response schema statically, so it projects the
fields it needs through accessors that never raise: a missing key and a key
holding the wrong type both read as ``None``.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any


class Document(Mapping[str, Any]):
    """Read-only view over an engine's structured tool output.

    ``raw`` keeps the value exactly as received (which may not even be a
    mapping, e.g. a bare list of artifacts). Mapping access only sees the
    top-level keys when ``raw`` is a mapping; otherwise the document reads
    as empty.
    """

    __slots__ = ("_raw",)

    def __init__(self, raw: Any = None) -> None:
        self._raw = raw

    @property
    def raw(self) -> Any:
        return self._raw

    @property
    def _mapping(self) -> Mapping[str, Any]:
        if isinstance(self._raw, Mapping):
            return self._raw
        return {}

    def __getitem__(self, key: str) -> Any:
        return self._mapping[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._mapping)

    def __len__(self) -> int:
        return len(self._mapping)

    def __repr__(self) -> str:
        return f"Document({self._raw!r})"

    @property
    def is_empty(self) -> bool:
        """True when the engine returned no structured output at all."""
        return self._raw is None or (isinstance(self._raw, Mapping | list) and len(self._raw) == 0)

    def get_str(self, key: str) -> str | None:
        value = self._mapping.get(key)
        return value if isinstance(value, str) else None

    def get_mapping(self, key: str) -> Mapping[str, Any] | None:
        value = self._mapping.get(key)
        return value if isinstance(value, Mapping) else None

    def get_list(self, key: str) -> list[Any] | None:
        value = self._mapping.get(key)
        return value if isinstance(value, list) else None

    def get_str_map(self, key: str) -> dict[str, str] | None:
        """String-to-string projection of a nested mapping.

        Non-string values are dropped, matching how engines' ``files`` and
        ``metadata`` outputs are merged into a test environment.
        """
        value = self.get_mapping(key)
        if value is None:
            return None
        return {k: v for k, v in value.items() if isinstance(k, str) and isinstance(v, str)}

    def get_str_list(self, key: str) -> list[str] | None:
        value = self.get_list(key)
        if value is None:
            return None
        return [item for item in value if isinstance(item, str)]
