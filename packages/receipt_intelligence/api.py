"""Public API for the ``receipt_intelligence`` package.

This module is the stable import surface. It wires the SQL-backed store and
the OpenAI-backed extractor from the environment and delegates to the
orchestrator in :mod:`receipt_intelligence.pipeline`. Callers that bring
their own store or extractor should use the pipeline functions directly.
"""

from __future__ import annotations

from .config import AiSettings
from .extraction import ReceiptAiExtractor
from .models import ProcessingResult
from .persistence import SqlReceiptStore
from .pipeline import dry_run_rules as _dry_run_rules
from .pipeline import process_receipt as _process_receipt
from .rule_engine import RuleEngineResult


def process_receipt(
    receipt_id: str,
    user_id: int,
    *,
    database_url: str | None = None,
    settings: AiSettings | None = None,
) -> ProcessingResult:
    """Extract, classify and persist one receipt.

    Input
    -----
    receipt_id, user_id:
        The receipt to process and its owner. A receipt owned by someone else
        is treated as missing.
    database_url:
        Overrides ``DATABASE_URL`` for this call.
    settings:
        AI settings; defaults to :meth:`AiSettings.from_env`.

    Output
    ------
    A :class:`~receipt_intelligence.models.ProcessingResult` holding the saved
    receipt, the typed explanation trail and the raw extraction outcome.

    Raises
    ------
    ReceiptNotFoundError
        The receipt does not exist for ``user_id``.
    ReceiptStoreError
        The database rejected a read or write.
    """

    store = SqlReceiptStore(database_url=database_url)
    extractor = ReceiptAiExtractor(settings if settings is not None else AiSettings.from_env())
    return _process_receipt(receipt_id, user_id, store=store, extractor=extractor)


def dry_run_rules(
    receipt_id: str, user_id: int, *, database_url: str | None = None
) -> RuleEngineResult:
    """Show what the owner's active rules would do to a stored receipt, without saving."""

    return _dry_run_rules(receipt_id, user_id, store=SqlReceiptStore(database_url=database_url))


__all__ = ["dry_run_rules", "process_receipt"]
