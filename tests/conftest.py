"""Pytest configuration for test isolation.

The package reads its AI settings and ``DATABASE_URL`` from the environment
and keeps one shared SQLAlchemy engine per process. A developer's shell (or a
local ``.env`` already loaded into it) would otherwise leak real credentials
and databases into tests, and an engine created by one test would pin every
later test to the same database file.

An autouse fixture clears the relevant variables and disposes the shared
engine around every test.
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

# Make the workspace packages importable without an editable install.
_ROOT = Path(__file__).resolve().parents[1]
sys.path[:0] = [
    p
    for p in (str(_ROOT / "packages"), str(_ROOT / "libs" / "db" / "src"), str(_ROOT))
    if p not in sys.path
]

from db.client import dispose_engine  # noqa: E402

_ENV_VARS = (
    "RECEIPTS_AI_ENABLED",
    "RECEIPTS_AI_PROVIDER",
    "RECEIPTS_AI_MODEL",
    "RECEIPTS_AI_TIMEOUT_SECONDS",
    "RECEIPTS_AI_MAX_OUTPUT_TOKENS",
    "OPENAI_API_KEY",
    "OPENAI_BASE_URL",
    "DATABASE_URL",
    "RECEIPT_INTELLIGENCE_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    dispose_engine()
    yield
    dispose_engine()


@pytest.fixture()
def receipt_image(tmp_path: Path) -> Path:
    """A tiny real PNG on disk (content-sniffed, so the bytes must be valid)."""

    from PIL import Image

    path = tmp_path / "receipt.png"
    Image.new("RGB", (8, 8), "white").save(path, format="PNG")
    return path
