"""Field normalizers for untrusted extraction output.

Every function here is total: malformed input degrades to ``None`` (or an
empty collection) and nothing raises. Canonical values pass through
unchanged, so applying a normalizer twice gives the same result as applying
it once.

Money uses :class:`~decimal.Decimal` rounded half-up to 2 places, matching
how amounts are stored. Confidence is a float in ``[0, 1]`` rounded to 4
places.
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from .models import ExtractedFields, LineItem

_CENT = Decimal("0.01")
_CONFIDENCE_STEP = Decimal("0.0001")

_NUMERIC_JUNK_RE = re.compile(r"[^0-9.\-]")
_NON_DIGIT_RE = re.compile(r"[^0-9]")
_ISO_DATE_RE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")
_CURRENCY_RE = re.compile(r"[A-Z]{3}")


def _is_scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float, Decimal)) and not isinstance(value, bool)


def parse_decimal(value: Any) -> Decimal | None:
    """Parse a number, stripping everything but digits, ``.`` and ``-`` from strings."""

    if isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, Decimal)):
            d = Decimal(value)
        elif isinstance(value, float):
            if not math.isfinite(value):
                return None
            d = Decimal(str(value))
        elif isinstance(value, str):
            clean = _NUMERIC_JUNK_RE.sub("", value)
            if not clean:
                return None
            d = Decimal(clean)
        else:
            return None
    except (InvalidOperation, ValueError):
        return None
    return d if d.is_finite() else None


def normalize_text(value: Any) -> str | None:
    if not _is_scalar(value):
        return None
    text = str(value).strip()
    return text or None


def normalize_date(value: Any) -> date | None:
    """Accept ``YYYY-MM-DD`` strings naming a real calendar date.

    No fuzzy parsing: ``"03/04/2024"`` or ``"2024-02-30"`` become ``None``.
    """

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = normalize_text(value)
    if text is None or not _ISO_DATE_RE.fullmatch(text):
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        return None


def normalize_currency(value: Any) -> str | None:
    text = normalize_text(value)
    if text is None:
        return None
    code = text[:3].upper()
    return code if _CURRENCY_RE.fullmatch(code) else None


def normalize_money(value: Any) -> Decimal | None:
    d = parse_decimal(value)
    if d is None:
        return None
    try:
        return d.quantize(_CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None


def normalize_confidence(value: Any) -> float | None:
    d = parse_decimal(value)
    if d is None:
        return None
    d = max(Decimal(0), min(Decimal(1), d))
    return float(d.quantize(_CONFIDENCE_STEP, rounding=ROUND_HALF_UP))


def normalize_last4(value: Any) -> str | None:
    text = normalize_text(value)
    if text is None:
        return None
    digits = _NON_DIGIT_RE.sub("", text)
    return digits[-4:] or None


def normalize_tags(value: Any) -> list[str]:
    """Return trimmed, non-empty, de-duplicated tags in first-seen order.

    Accepts a comma-separated string or a list/tuple of scalars; anything
    else yields ``[]``. Comparison is case-sensitive.
    """

    if isinstance(value, str):
        items: list[Any] = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = list(value)
    else:
        return []

    out: dict[str, None] = {}
    for item in items:
        tag = normalize_text(item)
        if tag is not None:
            out.setdefault(tag, None)
    return list(out)


def _line_item_source(item: Any) -> Mapping[str, Any] | None:
    if isinstance(item, LineItem):
        return {
            "name": item.name,
            "quantity": item.quantity,
            "unit_price": item.unit_price,
            "total_price": item.total_price,
            "category": item.category,
        }
    if isinstance(item, Mapping):
        return item
    return None


def normalize_line_items(value: Any) -> list[LineItem]:
    """Validate line items; entries without a non-empty ``name`` are dropped."""

    if not isinstance(value, (list, tuple)):
        return []

    items: list[LineItem] = []
    for raw in value:
        src = _line_item_source(raw)
        if src is None:
            continue
        name = normalize_text(src.get("name"))
        if name is None:
            continue
        items.append(
            LineItem(
                name=name,
                quantity=normalize_money(src.get("quantity")),
                unit_price=normalize_money(src.get("unit_price")),
                total_price=normalize_money(src.get("total_price")),
                category=normalize_text(src.get("category")),
            )
        )
    return items


def _pick(parsed: Mapping[str, Any], *keys: str) -> Any:
    # Schema name first, then the canonical receipt name (seen in free-text output).
    for key in keys:
        value = parsed.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        return value
    return None


def normalize_extraction(parsed: Mapping[str, Any]) -> ExtractedFields:
    """Map a decoded provider payload onto canonical, normalized receipt fields."""

    return ExtractedFields(
        merchant=normalize_text(_pick(parsed, "merchant_name", "merchant")),
        merchant_address=normalize_text(parsed.get("merchant_address")),
        receipt_number=normalize_text(parsed.get("receipt_number")),
        purchased_at=normalize_date(_pick(parsed, "purchase_date", "purchased_at")),
        purchased_time=normalize_text(_pick(parsed, "purchase_time", "purchased_time")),
        currency=normalize_currency(parsed.get("currency")),
        subtotal=normalize_money(parsed.get("subtotal")),
        tax=normalize_money(parsed.get("tax")),
        tip=normalize_money(parsed.get("tip")),
        total=normalize_money(parsed.get("total")),
        payment_method=normalize_text(parsed.get("payment_method")),
        payment_last4=normalize_last4(parsed.get("payment_last4")),
        category=normalize_text(parsed.get("category")),
        tags=tuple(normalize_tags(parsed.get("tags"))),
        notes=normalize_text(_pick(parsed, "summary_notes", "notes")),
        raw_text=normalize_text(parsed.get("raw_text")),
        ai_confidence=normalize_confidence(_pick(parsed, "confidence", "ai_confidence")),
        line_items=tuple(normalize_line_items(parsed.get("line_items"))),
    )


__all__ = [
    "normalize_confidence",
    "normalize_currency",
    "normalize_date",
    "normalize_extraction",
    "normalize_last4",
    "normalize_line_items",
    "normalize_money",
    "normalize_tags",
    "normalize_text",
]
