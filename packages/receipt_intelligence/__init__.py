"""Public interface for the ``receipt_intelligence`` package.

This module exposes the package's API functions and public models/types as the
stable import surface. There is no runtime logic here, only symbol re-exports.
"""

from .api import dry_run_rules, process_receipt
from .config import AiSettings
from .errors import ReceiptNotFoundError, ReceiptStoreError, RuleValidationError
from .extraction import ReceiptAiExtractor
from .json_recovery import recover_json_object
from .models import (
    AiExtractionStage,
    ExtractedFields,
    ExtractionOutcome,
    LineItem,
    ProcessingResult,
    Receipt,
    Rule,
    RuleEngineStage,
    parse_explanation,
)
from .rule_engine import RuleEngineResult, apply_rules

__all__ = [
    # API
    "process_receipt",
    "dry_run_rules",
    "apply_rules",
    "recover_json_object",
    "ReceiptAiExtractor",
    "AiSettings",
    # Models / types
    "Receipt",
    "LineItem",
    "Rule",
    "ExtractedFields",
    "ExtractionOutcome",
    "AiExtractionStage",
    "RuleEngineStage",
    "ProcessingResult",
    "RuleEngineResult",
    "parse_explanation",
    # Errors
    "ReceiptNotFoundError",
    "ReceiptStoreError",
    "RuleValidationError",
]
