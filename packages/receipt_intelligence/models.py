"""Data models for ``receipt_intelligence``.

Domain records (``Receipt``, ``LineItem``, ``Rule``) are frozen dataclasses;
stage updates produce new instances via :func:`dataclasses.replace`. The
explanation trail uses Pydantic models so the persisted JSON shape is
validated on the way in and on the way back out of storage.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

# ---------------------------------------------------------------------------
# Receipt and line items
# ---------------------------------------------------------------------------


def _money_json(v: Decimal | None) -> float | None:
    return float(v) if v is not None else None


@dataclass(frozen=True, slots=True)
class LineItem:
    """A single purchased item. ``name`` is always non-empty."""

    name: str
    quantity: Decimal | None = None
    unit_price: Decimal | None = None
    total_price: Decimal | None = None
    category: str | None = None

    def as_json(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "quantity": _money_json(self.quantity),
            "unit_price": _money_json(self.unit_price),
            "total_price": _money_json(self.total_price),
            "category": self.category,
        }


# Field groups used by the merge step and by persistence.
STRING_FIELDS: tuple[str, ...] = (
    "merchant",
    "merchant_address",
    "receipt_number",
    "purchased_time",
    "currency",
    "payment_method",
    "payment_last4",
    "category",
    "notes",
    "raw_text",
)
MONEY_FIELDS: tuple[str, ...] = ("subtotal", "tax", "tip", "total")


@dataclass(frozen=True, slots=True)
class Receipt:
    """The unit of work: one captured receipt in its canonical shape.

    ``tags`` is deduplicated and never contains empty strings. Money fields
    are 2-decimal :class:`~decimal.Decimal` values or ``None``.
    ``processing_explanation`` holds the JSON-ready explanation of the most
    recent processing run.
    """

    id: str
    user_id: int
    merchant: str | None = None
    merchant_address: str | None = None
    receipt_number: str | None = None
    purchased_at: date | None = None
    purchased_time: str | None = None
    currency: str | None = None
    subtotal: Decimal | None = None
    tax: Decimal | None = None
    tip: Decimal | None = None
    total: Decimal | None = None
    payment_method: str | None = None
    payment_last4: str | None = None
    category: str | None = None
    tags: tuple[str, ...] = ()
    notes: str | None = None
    raw_text: str | None = None
    line_items: tuple[LineItem, ...] = ()
    ai_confidence: float | None = None
    ai_model: str | None = None
    file_path: str | None = None
    processing_explanation: tuple[dict[str, Any], ...] = ()
    created_at: datetime | None = None
    updated_at: datetime | None = None
    processed_at: datetime | None = None

    def snapshot(self) -> dict[str, Any]:
        """Return every field as a plain mapping for rule matching.

        Tags become a list and line items their JSON form; other values are
        passed through unchanged (``date``/``Decimal`` included).
        """

        out: dict[str, Any] = {}
        for f in fields(self):
            if f.name == "processing_explanation":
                continue
            value = getattr(self, f.name)
            if f.name == "tags":
                value = list(value)
            elif f.name == "line_items":
                value = [item.as_json() for item in value]
            out[f.name] = value
        return out


@dataclass(frozen=True, slots=True)
class Rule:
    """A user-authored classification rule.

    ``conditions`` and ``actions`` hold the raw stored JSON (mapping or
    string); they are decoded tolerantly by the rule engine at evaluation
    time.
    """

    id: int
    user_id: int
    name: str
    is_active: bool = True
    priority: int = 100
    conditions: Any = field(default_factory=dict)
    actions: Any = field(default_factory=dict)


# ---------------------------------------------------------------------------
# AI extraction
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ExtractedFields:
    """Canonical, normalized field set produced from one AI extraction."""

    merchant: str | None = None
    merchant_address: str | None = None
    receipt_number: str | None = None
    purchased_at: date | None = None
    purchased_time: str | None = None
    currency: str | None = None
    subtotal: Decimal | None = None
    tax: Decimal | None = None
    tip: Decimal | None = None
    total: Decimal | None = None
    payment_method: str | None = None
    payment_last4: str | None = None
    category: str | None = None
    tags: tuple[str, ...] = ()
    notes: str | None = None
    raw_text: str | None = None
    ai_confidence: float | None = None
    line_items: tuple[LineItem, ...] = ()

    def non_empty_field_names(self) -> list[str]:
        """Names of fields carrying a value, in declaration order."""

        names: list[str] = []
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, str) and not value.strip():
                continue
            if isinstance(value, tuple) and not value:
                continue
            names.append(f.name)
        return names


type ExtractionStatus = Literal["success", "skipped", "failed"]


@dataclass(frozen=True, slots=True)
class ExtractionOutcome:
    """Typed result of the AI extraction stage.

    ``skipped`` and ``failed`` are expected outcomes, not errors: ``reason``
    carries a human-readable explanation and ``fields`` is ``None``.
    """

    status: ExtractionStatus
    provider: str
    model: str = ""
    reason: str = ""
    fields: ExtractedFields | None = None


# ---------------------------------------------------------------------------
# Explanation trail
# ---------------------------------------------------------------------------


class AiExtractionStage(BaseModel):
    """First explanation entry of every run: what the AI stage did."""

    model_config = ConfigDict(extra="allow")

    stage: Literal["ai_extraction"] = "ai_extraction"
    status: str
    provider: str
    model: str = ""
    reason: str = ""
    fields_extracted: list[str] = Field(default_factory=list)


class RuleEngineStage(BaseModel):
    """One entry per matched rule, in evaluation order."""

    model_config = ConfigDict(extra="allow")

    stage: Literal["rule_engine"] = "rule_engine"
    rule_id: int
    rule_name: str
    matched: Literal[True] = True
    conditions: dict[str, Any] = Field(default_factory=dict)
    actions_applied: dict[str, Any] = Field(default_factory=dict)


type ExplanationEntry = Annotated[
    AiExtractionStage | RuleEngineStage, Field(discriminator="stage")
]

_EXPLANATION_ADAPTER: TypeAdapter[list[AiExtractionStage | RuleEngineStage]] = TypeAdapter(
    list[Annotated[AiExtractionStage | RuleEngineStage, Field(discriminator="stage")]]
)


def dump_explanation(entries: list[AiExtractionStage | RuleEngineStage]) -> list[dict[str, Any]]:
    """Serialize explanation entries to the JSON list that gets persisted."""

    return [entry.model_dump(mode="json") for entry in entries]


def parse_explanation(raw: Any) -> list[AiExtractionStage | RuleEngineStage]:
    """Validate a persisted explanation list back into typed entries."""

    return _EXPLANATION_ADAPTER.validate_python(list(raw or []))


@dataclass(frozen=True, slots=True)
class ProcessingResult:
    """What :func:`~receipt_intelligence.pipeline.process_receipt` returns."""

    receipt: Receipt
    explanation: list[AiExtractionStage | RuleEngineStage]
    extraction: ExtractionOutcome


__all__ = [
    "AiExtractionStage",
    "ExplanationEntry",
    "ExtractedFields",
    "ExtractionOutcome",
    "ExtractionStatus",
    "LineItem",
    "MONEY_FIELDS",
    "ProcessingResult",
    "Receipt",
    "Rule",
    "RuleEngineStage",
    "STRING_FIELDS",
    "dump_explanation",
    "parse_explanation",
]
