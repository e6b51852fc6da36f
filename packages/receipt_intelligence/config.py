"""Runtime settings for the AI extraction stage.

Settings come from environment variables (the CLI loads a local ``.env`` via
``python-dotenv`` first). Nothing is read at import time; callers build an
:class:`AiSettings` explicitly with :meth:`AiSettings.from_env` or construct
one directly in tests.

Environment variables
---------------------
- ``RECEIPTS_AI_ENABLED``: ``1/true/yes/on`` enables extraction (default off).
- ``RECEIPTS_AI_PROVIDER``: provider key (default ``openai``; the only one
  supported).
- ``OPENAI_API_KEY``: API key for the provider.
- ``RECEIPTS_AI_MODEL``: model id (default ``gpt-4o-mini``).
- ``OPENAI_BASE_URL``: API base URL (default ``https://api.openai.com/v1``).
- ``RECEIPTS_AI_TIMEOUT_SECONDS``: request timeout, minimum 5 (default 45).
- ``RECEIPTS_AI_MAX_OUTPUT_TOKENS``: output budget clamped to 800..8000
  (default 2600).
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

DEFAULT_PROVIDER = "openai"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_TIMEOUT_SECONDS = 45
MIN_TIMEOUT_SECONDS = 5
DEFAULT_MAX_OUTPUT_TOKENS = 2600
MIN_OUTPUT_TOKENS = 800
MAX_OUTPUT_TOKENS = 8000

_TRUTHY = frozenset({"1", "true", "yes", "on"})


def _as_bool(raw: str | None) -> bool:
    return (raw or "").strip().lower() in _TRUTHY


def _as_int(raw: str | None, default: int) -> int:
    try:
        return int(str(raw).strip()) if raw is not None and str(raw).strip() else default
    except ValueError:
        return default


@dataclass(frozen=True, slots=True)
class AiSettings:
    """Read-only configuration for :class:`~receipt_intelligence.extraction.ReceiptAiExtractor`.

    ``timeout_seconds`` and ``max_output_tokens`` are clamped on construction
    so a misconfigured environment can never produce an unbounded request.
    """

    enabled: bool = False
    provider: str = DEFAULT_PROVIDER
    api_key: str = ""
    model: str = DEFAULT_MODEL
    base_url: str = DEFAULT_BASE_URL
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS

    def __post_init__(self) -> None:
        object.__setattr__(self, "provider", (self.provider or DEFAULT_PROVIDER).strip().lower())
        object.__setattr__(self, "api_key", (self.api_key or "").strip())
        object.__setattr__(self, "model", (self.model or "").strip() or DEFAULT_MODEL)
        object.__setattr__(self, "base_url", (self.base_url or DEFAULT_BASE_URL).rstrip("/"))
        object.__setattr__(self, "timeout_seconds", max(MIN_TIMEOUT_SECONDS, self.timeout_seconds))
        object.__setattr__(
            self,
            "max_output_tokens",
            max(MIN_OUTPUT_TOKENS, min(MAX_OUTPUT_TOKENS, self.max_output_tokens)),
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> AiSettings:
        env = os.environ if environ is None else environ
        return cls(
            enabled=_as_bool(env.get("RECEIPTS_AI_ENABLED")),
            provider=env.get("RECEIPTS_AI_PROVIDER") or DEFAULT_PROVIDER,
            api_key=env.get("OPENAI_API_KEY") or "",
            model=env.get("RECEIPTS_AI_MODEL") or DEFAULT_MODEL,
            base_url=env.get("OPENAI_BASE_URL") or DEFAULT_BASE_URL,
            timeout_seconds=_as_int(env.get("RECEIPTS_AI_TIMEOUT_SECONDS"), DEFAULT_TIMEOUT_SECONDS),
            max_output_tokens=_as_int(
                env.get("RECEIPTS_AI_MAX_OUTPUT_TOKENS"), DEFAULT_MAX_OUTPUT_TOKENS
            ),
        )


__all__ = ["AiSettings"]
