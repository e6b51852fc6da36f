"""AI extraction adapter: receipt image -> normalized field set.

Public API:
    - :class:`ReceiptAiExtractor`
    - :func:`load_image_data_url`

The adapter never raises for expected problems. Configuration gaps and
unreadable images produce a ``skipped`` outcome; provider errors and
unusable output produce a ``failed`` outcome. Either way the caller keeps
going without AI fields. The only side effect is the outbound request.
"""

from __future__ import annotations

import base64
import time
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from openai import (
    APIConnectionError,
    APIResponseValidationError,
    APIStatusError,
    OpenAI,
    OpenAIError,
)
from PIL import Image, UnidentifiedImageError

from . import prompting
from .config import AiSettings
from .json_recovery import recover_json_object
from .logging_setup import get_logger
from .models import ExtractionOutcome, Receipt
from .normalizers import normalize_extraction

SUPPORTED_PROVIDER = "openai"

# Pillow format name -> MIME type accepted by the vision endpoint.
_IMAGE_MIME_BY_FORMAT: dict[str, str] = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
}

# Read from response objects that are neither mappings nor pydantic models.
_RESPONSE_KEYS = ("output_text", "output_parsed", "output", "status", "incomplete_details")

_GENERIC_REQUEST_FAILURE = "OpenAI request failed."
_INVALID_BODY = "OpenAI response was not valid JSON."
_NO_STRUCTURED_OUTPUT = "OpenAI response did not include structured output."

_logger = get_logger("receipt_intelligence.extraction")


# ---- Image loading -----------------------------------------------------------


def load_image_data_url(file_path: str | None) -> str | None:
    """Return the image at ``file_path`` as a base64 ``data:`` URL.

    The MIME type is sniffed from the file content with Pillow, not taken from
    the extension. Returns ``None`` when the path is empty, missing,
    unreadable, empty, or not a JPEG/PNG/WEBP image.
    """

    path_text = (file_path or "").strip()
    if not path_text:
        return None
    path = Path(path_text)
    if not path.is_file():
        return None

    try:
        with Image.open(path) as img:
            fmt = img.format
        raw = path.read_bytes()
    except (OSError, UnidentifiedImageError, Image.DecompressionBombError):
        return None

    mime = _IMAGE_MIME_BY_FORMAT.get(fmt or "")
    if mime is None or not raw:
        return None
    return f"data:{mime};base64,{base64.b64encode(raw).decode('ascii')}"


# ---- Response shape helpers --------------------------------------------------


def _as_mapping(resp: Any) -> Mapping[str, Any] | None:
    """Turn an SDK response (or an already-decoded body) into a plain mapping.

    ``output_text`` is an SDK convenience property, not a model field, so it
    is copied into the mapping explicitly.
    """

    if isinstance(resp, Mapping):
        return resp
    dump = getattr(resp, "model_dump", None)
    if callable(dump):
        data = dump(mode="json")
        if not isinstance(data, dict):
            return None
    else:
        data = {k: getattr(resp, k) for k in _RESPONSE_KEYS if hasattr(resp, k)}
        if not data:
            return None
    text = getattr(resp, "output_text", None)
    if isinstance(text, str) and "output_text" not in data:
        data["output_text"] = text
    return data


def _content_chunks(body: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    chunks: list[Mapping[str, Any]] = []
    output = body.get("output")
    if not isinstance(output, list):
        return chunks
    for entry in output:
        if not isinstance(entry, Mapping):
            continue
        content = entry.get("content")
        if not isinstance(content, list):
            continue
        chunks.extend(c for c in content if isinstance(c, Mapping))
    return chunks


def extract_output_object(body: Mapping[str, Any]) -> dict[str, Any] | None:
    """Return a structured object the provider already parsed, if any."""

    parsed = body.get("output_parsed")
    if isinstance(parsed, dict):
        return parsed

    for chunk in _content_chunks(body):
        parsed = chunk.get("parsed")
        if isinstance(parsed, dict):
            return parsed
        as_json = chunk.get("json")
        if isinstance(as_json, dict):
            return as_json
        if isinstance(as_json, str):
            recovered = recover_json_object(as_json)
            if recovered is not None:
                return recovered
    return None


def extract_output_text(body: Mapping[str, Any]) -> str | None:
    """Return the first non-blank text output, preferring ``output_text``."""

    text = body.get("output_text")
    if isinstance(text, str) and text.strip():
        return text

    for chunk in _content_chunks(body):
        text = chunk.get("text")
        if isinstance(text, str) and text.strip():
            return text
    return None


def invalid_json_reason(body: Mapping[str, Any]) -> str:
    """Explain unusable output; truncated responses get a token-budget hint."""

    status = str(body.get("status") or "").strip().lower()
    if status == "incomplete":
        details = body.get("incomplete_details")
        reason = ""
        if isinstance(details, Mapping):
            reason = str(details.get("reason") or "").strip()
        if reason:
            return f"OpenAI output was incomplete ({reason}). Increase max_output_tokens."
        return "OpenAI output was incomplete. Increase max_output_tokens."
    return "OpenAI returned invalid JSON."


def _status_error_message(exc: APIStatusError) -> str:
    body = exc.body
    if isinstance(body, Mapping):
        err = body.get("error", body)
        if isinstance(err, Mapping):
            message = str(err.get("message") or "").strip()
            if message:
                return message
    return _GENERIC_REQUEST_FAILURE


def _create_client(settings: AiSettings) -> OpenAI:
    # SDK retries are disabled: the timeout is the only bound on a run.
    return OpenAI(
        api_key=settings.api_key,
        base_url=settings.base_url,
        timeout=float(settings.timeout_seconds),
        max_retries=0,
    )


# ---- Adapter -----------------------------------------------------------------


class ReceiptAiExtractor:
    """Run one vision extraction for a receipt and normalize the result.

    Holds only read-only settings, so one instance can serve concurrent
    calls for different receipts.
    """

    def __init__(self, settings: AiSettings | None = None) -> None:
        self._settings = settings if settings is not None else AiSettings.from_env()

    @property
    def settings(self) -> AiSettings:
        return self._settings

    def extract(self, receipt: Receipt) -> ExtractionOutcome:
        s = self._settings

        if not s.enabled:
            return ExtractionOutcome("skipped", s.provider, "", "AI extraction disabled in config.")
        if s.provider != SUPPORTED_PROVIDER:
            return ExtractionOutcome("skipped", s.provider, "", "Unsupported AI provider configured.")
        if not s.api_key:
            return ExtractionOutcome("skipped", s.provider, s.model, "OpenAI API key is missing.")

        image_url = load_image_data_url(receipt.file_path)
        if image_url is None:
            return ExtractionOutcome(
                "skipped", s.provider, s.model, "Receipt image is missing or unreadable."
            )

        try:
            client = _create_client(s)
        except OpenAIError as e:
            return ExtractionOutcome(
                "skipped", s.provider, s.model, f"OpenAI client is unavailable: {e}"
            )

        _logger.info("extraction:start receipt_id=%s model=%s", receipt.id, s.model)
        t0 = time.perf_counter()
        try:
            resp = client.responses.create(
                model=s.model,
                input=prompting.build_input(image_url, receipt.raw_text),
                text={"format": prompting.build_response_format()},
                max_output_tokens=s.max_output_tokens,
            )
        except APIConnectionError as e:
            return self._failed(receipt, t0, f"OpenAI HTTP request failed: {e}")
        except APIStatusError as e:
            return self._failed(receipt, t0, _status_error_message(e), status_code=e.status_code)
        except APIResponseValidationError:
            return self._failed(receipt, t0, _INVALID_BODY)
        except OpenAIError:
            return self._failed(receipt, t0, _GENERIC_REQUEST_FAILURE)

        body = _as_mapping(resp)
        if body is None:
            return self._failed(receipt, t0, _INVALID_BODY)

        parsed = extract_output_object(body)
        if parsed is None:
            text = extract_output_text(body)
            if text is None:
                return self._failed(receipt, t0, _NO_STRUCTURED_OUTPUT)
            parsed = recover_json_object(text)
        if parsed is None:
            return self._failed(receipt, t0, invalid_json_reason(body))

        fields = normalize_extraction(parsed)
        dt_ms = (time.perf_counter() - t0) * 1000.0
        _logger.info(
            "extraction:done receipt_id=%s fields=%d latency_ms=%.2f",
            receipt.id,
            len(fields.non_empty_field_names()),
            dt_ms,
        )
        return ExtractionOutcome("success", s.provider, s.model, "", fields)

    def _failed(
        self,
        receipt: Receipt,
        t0: float,
        reason: str,
        *,
        status_code: int | None = None,
    ) -> ExtractionOutcome:
        dt_ms = (time.perf_counter() - t0) * 1000.0
        _logger.warning(
            "extraction:failed receipt_id=%s status_code=%s latency_ms=%.2f reason=%s",
            receipt.id,
            status_code if status_code is not None else "-",
            dt_ms,
            reason,
        )
        return ExtractionOutcome("failed", self._settings.provider, self._settings.model, reason)


__all__ = [
    "ReceiptAiExtractor",
    "extract_output_object",
    "extract_output_text",
    "invalid_json_reason",
    "load_image_data_url",
]
