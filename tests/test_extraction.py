import base64
from decimal import Decimal
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

import receipt_intelligence.extraction as extraction_mod
from receipt_intelligence.config import AiSettings
from receipt_intelligence.extraction import ReceiptAiExtractor, load_image_data_url
from receipt_intelligence.models import Receipt
from receipt_intelligence.prompting import SCHEMA_NAME
from tests.helpers.openai_stub import (
    connection_error,
    make_openai_stub,
    status_error,
    text_response,
)

SETTINGS = AiSettings(enabled=True, api_key="sk-test", model="gpt-4o-mini", timeout_seconds=20)

PAYLOAD = {
    "merchant_name": "Blue Bottle Coffee",
    "merchant_address": None,
    "receipt_number": "A-17",
    "purchase_date": "2024-06-02",
    "purchase_time": "09:41",
    "currency": "usd",
    "subtotal": 6.5,
    "tax": 0.58,
    "tip": None,
    "total": 7.08,
    "payment_method": "Visa",
    "payment_last4": "4242",
    "category": "Coffee",
    "tags": ["coffee", "coffee", " "],
    "summary_notes": None,
    "raw_text": "BLUE BOTTLE ...",
    "confidence": 0.91,
    "line_items": [{"name": "Cortado", "quantity": 1, "unit_price": 6.5, "total_price": 6.5, "category": None}],
}


def _receipt(file_path: Path | str | None, raw_text: str | None = None) -> Receipt:
    return Receipt(id="r-1", user_id=1, file_path=str(file_path) if file_path else None, raw_text=raw_text)


def _run(monkeypatch: pytest.MonkeyPatch, receipt: Receipt, *, response: Any = None, error=None, settings=SETTINGS):
    calls: list[dict[str, Any]] = []
    inits: list[dict[str, Any]] = []
    stub = make_openai_stub(response, error=error, calls_out=calls, init_out=inits)
    monkeypatch.setattr(extraction_mod, "OpenAI", stub)
    outcome = ReceiptAiExtractor(settings).extract(receipt)
    return outcome, calls, inits


# ---- Success paths -----------------------------------------------------------


def test_success_from_text_output(monkeypatch, receipt_image):
    outcome, calls, inits = _run(
        monkeypatch, _receipt(receipt_image, raw_text="typed by user"), response=text_response(PAYLOAD)
    )

    assert outcome.status == "success"
    assert outcome.provider == "openai"
    assert outcome.model == "gpt-4o-mini"
    assert outcome.reason == ""
    f = outcome.fields
    assert f is not None
    assert f.merchant == "Blue Bottle Coffee"
    assert f.currency == "USD"
    assert f.total == Decimal("7.08")
    assert f.tags == ("coffee",)
    assert f.ai_confidence == 0.91
    assert [li.name for li in f.line_items] == ["Cortado"]

    assert inits == [
        {"api_key": "sk-test", "base_url": "https://api.openai.com/v1", "timeout": 20.0, "max_retries": 0}
    ]
    assert len(calls) == 1
    call = calls[0]
    assert call["model"] == "gpt-4o-mini"
    assert call["max_output_tokens"] == 2600
    fmt = call["text"]["format"]
    assert fmt["type"] == "json_schema" and fmt["name"] == SCHEMA_NAME and fmt["strict"] is True
    assert set(fmt["schema"]["required"]) == set(fmt["schema"]["properties"])

    system_msg, user_msg = call["input"]
    assert system_msg["role"] == "system"
    text_part, image_part = user_msg["content"]
    assert "typed by user" in text_part["text"]
    expected_b64 = base64.b64encode(receipt_image.read_bytes()).decode("ascii")
    assert image_part == {"type": "input_image", "image_url": f"data:image/png;base64,{expected_b64}"}


def test_success_from_output_text_attribute_with_fenced_json(monkeypatch, receipt_image):
    resp = SimpleNamespace(output_text='Here you go:\n```json\n{"merchant_name": "Shell", "total": "40"}\n```')
    outcome, _, _ = _run(monkeypatch, _receipt(receipt_image), response=resp)

    assert outcome.status == "success"
    assert outcome.fields.merchant == "Shell"
    assert outcome.fields.total == Decimal("40.00")


def test_success_from_pre_parsed_output(monkeypatch, receipt_image):
    body = {"output": [{"content": [{"type": "output_text", "parsed": {"merchant_name": "Target"}}]}]}
    outcome, _, _ = _run(monkeypatch, _receipt(receipt_image), response=body)

    assert outcome.status == "success"
    assert outcome.fields.merchant == "Target"


# ---- Skipped -----------------------------------------------------------------


@pytest.mark.parametrize(
    ("settings", "reason"),
    [
        (AiSettings(enabled=False, api_key="sk-test"), "AI extraction disabled in config."),
        (AiSettings(enabled=True, provider="Anthropic", api_key="k"), "Unsupported AI provider configured."),
        (AiSettings(enabled=True, api_key="  "), "OpenAI API key is missing."),
    ],
)
def test_configuration_gaps_skip_without_calling_the_provider(monkeypatch, receipt_image, settings, reason):
    outcome, calls, inits = _run(monkeypatch, _receipt(receipt_image), settings=settings)

    assert outcome.status == "skipped"
    assert outcome.reason == reason
    assert outcome.fields is None
    assert calls == [] and inits == []


@pytest.mark.parametrize("kind", ["missing", "none", "not_an_image", "gif"])
def test_unusable_image_is_skipped(monkeypatch, tmp_path, kind):
    if kind == "missing":
        path: Path | None = tmp_path / "gone.jpg"
    elif kind == "none":
        path = None
    elif kind == "not_an_image":
        path = tmp_path / "receipt.jpg"
        path.write_text("definitely not a jpeg")
    else:
        from PIL import Image

        path = tmp_path / "receipt.gif"
        Image.new("P", (4, 4)).save(path, format="GIF")

    outcome, calls, _ = _run(monkeypatch, _receipt(path))
    assert outcome.status == "skipped"
    assert outcome.reason == "Receipt image is missing or unreadable."
    assert calls == []


def test_client_construction_failure_is_skipped(monkeypatch, receipt_image):
    import openai

    class _Broken:
        def __init__(self, *a, **kw):
            raise openai.OpenAIError("no transport")

    monkeypatch.setattr(extraction_mod, "OpenAI", _Broken)
    outcome = ReceiptAiExtractor(SETTINGS).extract(_receipt(receipt_image))

    assert outcome.status == "skipped"
    assert outcome.reason.startswith("OpenAI client is unavailable")


# ---- Failed ------------------------------------------------------------------


def test_http_500_with_provider_message(monkeypatch, receipt_image):
    outcome, _, _ = _run(
        monkeypatch, _receipt(receipt_image), error=status_error(500, "The server had an error")
    )
    assert outcome.status == "failed"
    assert outcome.reason == "The server had an error"
    assert outcome.fields is None


def test_http_error_without_message_uses_generic_reason(monkeypatch, receipt_image):
    outcome, _, _ = _run(monkeypatch, _receipt(receipt_image), error=status_error(502))
    assert outcome.status == "failed"
    assert outcome.reason == "OpenAI request failed."


def test_transport_error_is_failed(monkeypatch, receipt_image):
    outcome, _, _ = _run(monkeypatch, _receipt(receipt_image), error=connection_error())
    assert outcome.status == "failed"
    assert outcome.reason.startswith("OpenAI HTTP request failed:")


def test_response_without_any_output_is_failed(monkeypatch, receipt_image):
    outcome, _, _ = _run(monkeypatch, _receipt(receipt_image), response={"status": "completed", "output": []})
    assert outcome.status == "failed"
    assert outcome.reason == "OpenAI response did not include structured output."


def test_invalid_json_is_failed(monkeypatch, receipt_image):
    outcome, _, _ = _run(monkeypatch, _receipt(receipt_image), response=text_response("I cannot read this receipt."))
    assert outcome.status == "failed"
    assert outcome.reason == "OpenAI returned invalid JSON."


def test_truncated_output_recommends_more_tokens(monkeypatch, receipt_image):
    body = text_response('{"merchant_name": "Costco", "line_items": [', status="incomplete", incomplete_reason="max_output_tokens")
    outcome, _, _ = _run(monkeypatch, _receipt(receipt_image), response=body)
    assert outcome.status == "failed"
    assert outcome.reason == "OpenAI output was incomplete (max_output_tokens). Increase max_output_tokens."


def test_load_image_data_url_sniffs_content_not_extension(tmp_path):
    from PIL import Image

    path = tmp_path / "looks-like.png"
    Image.new("RGB", (4, 4)).save(path, format="JPEG")
    url = load_image_data_url(str(path))
    assert url is not None and url.startswith("data:image/jpeg;base64,")
    assert load_image_data_url("   ") is None


def test_oversized_number_in_text_output_is_failed(monkeypatch, receipt_image):
    text = 'Here: {"total": ' + "9" * 5000 + "}"
    outcome, _, _ = _run(monkeypatch, _receipt(receipt_image), response=text_response(text))
    assert outcome.status == "failed"
    assert outcome.reason == "OpenAI returned invalid JSON."
    assert outcome.fields is None
