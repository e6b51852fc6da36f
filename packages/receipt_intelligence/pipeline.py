"""Processing orchestrator: extract, merge, classify, persist.

One call to :func:`process_receipt` is one processing run for one receipt:

1. load the receipt for its owner (``ReceiptNotFoundError`` if absent);
2. run AI extraction (never raises; soft outcomes are recorded);
3. merge AI fields into the receipt;
4. run the owner's active rules against the merged snapshot;
5. let the rule output decide ``category``/``notes``/``tags``;
6. save fields and the explanation trail in a single write.

Extraction failures and runs where no rule matches still persist. Only a
lookup miss or a storage error aborts the run.
"""

from __future__ import annotations

import time
from dataclasses import replace
from typing import Any, Protocol

from .errors import ReceiptNotFoundError
from .logging_setup import get_logger
from .models import (
    MONEY_FIELDS,
    STRING_FIELDS,
    AiExtractionStage,
    ExtractedFields,
    ExtractionOutcome,
    ProcessingResult,
    Receipt,
    RuleEngineStage,
    dump_explanation,
)
from .persistence import ReceiptStore
from .rule_engine import RuleEngineResult, apply_rules

_logger = get_logger("receipt_intelligence.pipeline")


class Extractor(Protocol):
    """Anything with ``extract(receipt) -> ExtractionOutcome`` (see ``ReceiptAiExtractor``)."""

    def extract(self, receipt: Receipt) -> ExtractionOutcome: ...


def merge_extracted(receipt: Receipt, fields: ExtractedFields, *, model: str) -> Receipt:
    """Overlay AI values onto ``receipt`` without erasing known data.

    Strings overwrite only when non-empty after trimming; numbers and dates
    only when present; tags only when the AI list is non-empty. Line items
    are replaced as a whole when the AI supplied some or the receipt has none.
    """

    changes: dict[str, Any] = {}
    for name in STRING_FIELDS:
        value = getattr(fields, name)
        if isinstance(value, str) and value.strip():
            changes[name] = value
    for name in (*MONEY_FIELDS, "purchased_at", "ai_confidence"):
        value = getattr(fields, name)
        if value is not None:
            changes[name] = value
    if fields.tags:
        changes["tags"] = tuple(fields.tags)
    if fields.line_items or not receipt.line_items:
        changes["line_items"] = tuple(fields.line_items)
    if model:
        changes["ai_model"] = model
    return replace(receipt, **changes)


def _ai_stage(outcome: ExtractionOutcome) -> AiExtractionStage:
    names = outcome.fields.non_empty_field_names() if outcome.fields is not None else []
    return AiExtractionStage(
        status=outcome.status,
        provider=outcome.provider,
        model=outcome.model,
        reason=outcome.reason,
        fields_extracted=names,
    )


def _load(store: ReceiptStore, receipt_id: str, user_id: int) -> Receipt:
    receipt = store.find(receipt_id, user_id)
    if receipt is None:
        raise ReceiptNotFoundError(receipt_id, user_id)
    return receipt


def process_receipt(
    receipt_id: str,
    user_id: int,
    *,
    store: ReceiptStore,
    extractor: Extractor,
) -> ProcessingResult:
    """Run one full processing pass for ``receipt_id`` owned by ``user_id``."""

    t0 = time.perf_counter()
    receipt = _load(store, receipt_id, user_id)

    outcome = extractor.extract(receipt)
    merged = receipt
    if outcome.status == "success" and outcome.fields is not None:
        merged = merge_extracted(receipt, outcome.fields, model=outcome.model)

    rules = store.list_active_rules(user_id)
    classified = apply_rules(merged.snapshot(), rules)
    final = replace(
        merged,
        category=classified.category,
        notes=classified.notes,
        tags=tuple(classified.tags),
    )

    explanation: list[AiExtractionStage | RuleEngineStage] = [_ai_stage(outcome)]
    explanation.extend(classified.explanation)

    saved = store.save(receipt_id, user_id, final, dump_explanation(explanation))
    if saved is None:
        raise ReceiptNotFoundError(receipt_id, user_id)

    dt_ms = (time.perf_counter() - t0) * 1000.0
    _logger.info(
        "pipeline:done receipt_id=%s ai_status=%s rules=%d matched=%d latency_ms=%.2f",
        receipt_id,
        outcome.status,
        len(rules),
        len(classified.explanation),
        dt_ms,
    )
    return ProcessingResult(receipt=saved, explanation=explanation, extraction=outcome)


def dry_run_rules(receipt_id: str, user_id: int, *, store: ReceiptStore) -> RuleEngineResult:
    """Evaluate the owner's active rules against the stored receipt; nothing is saved."""

    receipt = _load(store, receipt_id, user_id)
    return apply_rules(receipt.snapshot(), store.list_active_rules(user_id))


__all__ = ["Extractor", "dry_run_rules", "merge_extracted", "process_receipt"]
