# src/forgeflow/core/identifiers.py
"""Test environment identifiers.

Format: ``test-<stage>-<YYYYMMDD>-<8 hex>``. The random suffix gives 2**32
values per stage per day, so collisions are rare but possible; the create
workflow checks for them and regenerates.
"""

from __future__ import annotations

import re
import secrets
from collections.abc import Callable
from datetime import UTC, datetime

TEST_ID_PATTERN = re.compile(r"^test-(?P<stage>.+)-(?P<date>\d{8})-(?P<suffix>[0-9a-f]{8})$")


def generate_test_id(stage: str, *, now: Callable[[], datetime] | None = None) -> str:
    """Generate a fresh test environment ID for ``stage``.

    Args:
        stage: Stage name, embedded verbatim
        now: Clock override for tests (must return an aware datetime)
    """
    current = now() if now is not None else datetime.now(UTC)
    return f"test-{stage}-{current:%Y%m%d}-{secrets.token_hex(4)}"


def parse_test_id(test_id: str) -> tuple[str, str, str] | None:
    """Split a test ID into (stage, date, suffix), or None if malformed."""
    match = TEST_ID_PATTERN.match(test_id)
    if match is None:
        return None
    return match.group("stage"), match.group("date"), match.group("suffix")
