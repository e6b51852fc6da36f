"""Prompt and strict response-schema construction for receipt extraction.

This module builds:
- The system instruction and the user instruction text (optionally carrying
  raw text the user or a previous run already captured).
- The Responses API ``input`` message list with the receipt image attached
  as a ``data:`` URL.
- The strict JSON Schema ``text.format`` object. Every property is required
  and nullable so the model must state "unknown" explicitly.
"""

from __future__ import annotations

from typing import Any

from openai.types.responses.response_format_text_json_schema_config_param import (
    ResponseFormatTextJSONSchemaConfigParam,
)

SCHEMA_NAME = "receipt_extraction"

# Order matters: it is the order the model sees and the ``required`` order.
SCHEMA_FIELD_TYPES: tuple[tuple[str, Any], ...] = (
    ("merchant_name", ["string", "null"]),
    ("merchant_address", ["string", "null"]),
    ("receipt_number", ["string", "null"]),
    ("purchase_date", ["string", "null"]),
    ("purchase_time", ["string", "null"]),
    ("currency", ["string", "null"]),
    ("subtotal", ["number", "null"]),
    ("tax", ["number", "null"]),
    ("tip", ["number", "null"]),
    ("total", ["number", "null"]),
    ("payment_method", ["string", "null"]),
    ("payment_last4", ["string", "null"]),
    ("category", ["string", "null"]),
    ("tags", "array"),
    ("summary_notes", ["string", "null"]),
    ("raw_text", ["string", "null"]),
    ("confidence", ["number", "null"]),
    ("line_items", "array"),
)

_LINE_ITEM_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "name": {"type": "string"},
        "quantity": {"type": ["number", "null"]},
        "unit_price": {"type": ["number", "null"]},
        "total_price": {"type": ["number", "null"]},
        "category": {"type": ["string", "null"]},
    },
    "required": ["name", "quantity", "unit_price", "total_price", "category"],
}


def build_system_instructions() -> str:
    return "You are an expert receipt parser for accounting systems."


def build_user_text(existing_raw_text: str | None = None) -> str:
    """Instruction text sent alongside the image.

    When the receipt already carries raw text (typed by the user or kept from
    an earlier run) it is appended as extra context for the model.
    """

    text = (
        "Extract all receipt fields with best effort.\n"
        "Rules:\n"
        "- Return valid JSON only using the provided schema.\n"
        "- purchase_date must be YYYY-MM-DD when known.\n"
        "- currency should be ISO code like USD.\n"
        "- line_items must include each purchased item.\n"
        "- confidence must be between 0 and 1.\n"
        "- Keep unknown values as null.\n"
        "- raw_text should contain OCR-style full receipt text.\n"
    )
    prior = (existing_raw_text or "").strip()
    if prior:
        text += "\nExisting raw text from user/system:\n" + prior
    return text


def build_input(image_data_url: str, existing_raw_text: str | None = None) -> list[dict[str, Any]]:
    """Return the Responses API ``input`` list: system message, then text + image."""

    return [
        {
            "role": "system",
            "content": [{"type": "input_text", "text": build_system_instructions()}],
        },
        {
            "role": "user",
            "content": [
                {"type": "input_text", "text": build_user_text(existing_raw_text)},
                {"type": "input_image", "image_url": image_data_url},
            ],
        },
    ]


def build_response_format() -> ResponseFormatTextJSONSchemaConfigParam:
    """Return the strict JSON Schema ``text.format`` for receipt extraction."""

    properties: dict[str, Any] = {}
    for name, type_ in SCHEMA_FIELD_TYPES:
        if name == "tags":
            properties[name] = {"type": "array", "items": {"type": "string"}}
        elif name == "line_items":
            properties[name] = {"type": "array", "items": _LINE_ITEM_SCHEMA}
        else:
            properties[name] = {"type": type_}

    result: ResponseFormatTextJSONSchemaConfigParam = {
        "type": "json_schema",
        "name": SCHEMA_NAME,
        "strict": True,
        "schema": {
            "type": "object",
            "additionalProperties": False,
            "properties": properties,
            "required": [name for name, _ in SCHEMA_FIELD_TYPES],
        },
    }
    return result


__all__ = [
    "SCHEMA_FIELD_TYPES",
    "SCHEMA_NAME",
    "build_input",
    "build_response_format",
    "build_system_instructions",
    "build_user_text",
]
