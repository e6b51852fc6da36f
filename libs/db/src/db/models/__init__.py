"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the receipt and rule tables used by ``receipt_intelligence``.
"""

from .receipts import Base, RiReceipt, RiRule

__all__ = [
    "Base",
    "RiReceipt",
    "RiRule",
]
