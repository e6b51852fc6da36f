"""Hard-failure exception types.

Only the orchestrator's store interactions (and rule authoring helpers) raise
these. Extraction and rule evaluation never raise; they degrade to typed
outcomes instead.
"""

from __future__ import annotations


class ReceiptNotFoundError(LookupError):
    """The receipt does not exist or is not owned by the requesting user."""

    def __init__(self, receipt_id: str, user_id: int) -> None:
        super().__init__(f"Receipt not found: id={receipt_id!r} user_id={user_id}")
        self.receipt_id = receipt_id
        self.user_id = user_id


class ReceiptStoreError(RuntimeError):
    """The persistence layer rejected a read or write."""


class RuleValidationError(ValueError):
    """A user-authored rule failed validation (e.g. empty name)."""


__all__ = ["ReceiptNotFoundError", "ReceiptStoreError", "RuleValidationError"]
