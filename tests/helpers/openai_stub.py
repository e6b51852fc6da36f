"""Test helpers to stub the OpenAI client used by ``receipt_intelligence.extraction``.

``make_openai_stub`` returns a class shaped like ``openai.OpenAI``: it accepts
the constructor keywords the extractor passes and exposes
``responses.create(**kwargs)``. Every call's kwargs are appended to
``calls_out`` so tests can assert on the request (model, schema, image).
"""

from __future__ import annotations

import json
from typing import Any

import httpx
import openai

_URL = "https://api.openai.com/v1/responses"


def make_openai_stub(
    response: Any = None,
    *,
    error: BaseException | None = None,
    calls_out: list[dict[str, Any]] | None = None,
    init_out: list[dict[str, Any]] | None = None,
) -> type:
    """Build a stub client class returning ``response`` (or raising ``error``)."""

    calls = calls_out if calls_out is not None else []

    class _Responses:
        def create(self, **kwargs: Any) -> Any:
            calls.append(kwargs)
            if error is not None:
                raise error
            return response

    class _Client:
        def __init__(self, *a: Any, **kw: Any) -> None:
            if init_out is not None:
                init_out.append(kw)
            self.responses = _Responses()

    return _Client


def text_response(
    payload: Any,
    *,
    status: str = "completed",
    incomplete_reason: str | None = None,
) -> dict[str, Any]:
    """A decoded Responses body whose only output is a text chunk.

    ``payload`` may be a string (sent verbatim) or any JSON-serializable value.
    """

    text = payload if isinstance(payload, str) else json.dumps(payload)
    body: dict[str, Any] = {
        "status": status,
        "output": [{"type": "message", "content": [{"type": "output_text", "text": text}]}],
    }
    if incomplete_reason is not None:
        body["incomplete_details"] = {"reason": incomplete_reason}
    return body


def status_error(status_code: int, message: str | None = None) -> openai.APIStatusError:
    """An SDK status error as raised for a non-2xx reply."""

    request = httpx.Request("POST", _URL)
    response = httpx.Response(status_code, request=request)
    body = {"error": {"message": message}} if message is not None else None
    return openai.APIStatusError(f"Error code: {status_code}", response=response, body=body)


def connection_error() -> openai.APIConnectionError:
    return openai.APIConnectionError(message="Connection error.", request=httpx.Request("POST", _URL))
