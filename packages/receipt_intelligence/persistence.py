# ruff: noqa: I001
"""Persistence integration for receipt_intelligence.

The pipeline talks to storage through the :class:`ReceiptStore` protocol so
tests can swap in an in-memory store. :class:`SqlReceiptStore` implements it
over the shared database owned by ``libs/db`` (ORM models in
``db.models.receipts``, sessions from ``db.client``).

Scope:
- Load a receipt by id and owner; save processed fields plus the explanation
  in one ``UPDATE``.
- List a user's active rules in evaluation order (priority, then id).
- Receipt capture and rule CRUD used by the CLI.

All SQLAlchemy failures surface as :class:`~receipt_intelligence.errors.ReceiptStoreError`.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from decimal import Decimal
from typing import Any, Protocol

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError

from db.client import session_scope
from db.models.receipts import RiReceipt, RiRule
from .errors import ReceiptStoreError, RuleValidationError
from .logging_setup import get_logger
from .models import MONEY_FIELDS, STRING_FIELDS, Receipt, Rule
from .normalizers import (
    normalize_confidence,
    normalize_currency,
    normalize_date,
    normalize_last4,
    normalize_line_items,
    normalize_money,
    normalize_tags,
    normalize_text,
)
from .rule_engine import decode_json_field

DEFAULT_CURRENCY = "USD"
DEFAULT_RULE_PRIORITY = 100

_logger = get_logger("receipt_intelligence.persistence")


class ReceiptStore(Protocol):
    """Storage boundary used by :func:`receipt_intelligence.pipeline.process_receipt`."""

    def find(self, receipt_id: str, user_id: int) -> Receipt | None: ...

    def list_active_rules(self, user_id: int) -> list[Rule]: ...

    def save(
        self,
        receipt_id: str,
        user_id: int,
        receipt: Receipt,
        explanation: Sequence[Mapping[str, Any]],
    ) -> Receipt | None: ...


# ---- Row conversion ----------------------------------------------------------


def _row_to_receipt(row: RiReceipt) -> Receipt:
    return Receipt(
        id=row.id,
        user_id=int(row.user_id),
        merchant=row.merchant,
        merchant_address=row.merchant_address,
        receipt_number=row.receipt_number,
        purchased_at=row.purchased_at,
        purchased_time=row.purchased_time,
        currency=row.currency,
        subtotal=normalize_money(row.subtotal),
        tax=normalize_money(row.tax),
        tip=normalize_money(row.tip),
        total=normalize_money(row.total),
        payment_method=row.payment_method,
        payment_last4=row.payment_last4,
        category=row.category,
        tags=tuple(normalize_tags(row.tags or [])),
        notes=row.notes,
        raw_text=row.raw_text,
        line_items=tuple(normalize_line_items(row.line_items or [])),
        ai_confidence=normalize_confidence(row.ai_confidence),
        ai_model=row.ai_model,
        file_path=row.file_path,
        processing_explanation=tuple(
            dict(e) for e in (row.processing_explanation or []) if isinstance(e, Mapping)
        ),
        created_at=row.created_at,
        updated_at=row.updated_at,
        processed_at=row.processed_at,
    )


def _row_to_rule(row: RiRule) -> Rule:
    return Rule(
        id=int(row.id),
        user_id=int(row.user_id),
        name=row.name,
        is_active=bool(row.is_active),
        priority=int(row.priority if row.priority is not None else DEFAULT_RULE_PRIORITY),
        conditions=decode_json_field(row.conditions),
        actions=decode_json_field(row.actions),
    )


def _receipt_columns(receipt: Receipt) -> dict[str, Any]:
    """Column values for the processed-fields write."""

    values: dict[str, Any] = {name: getattr(receipt, name) for name in STRING_FIELDS}
    values.update({name: getattr(receipt, name) for name in MONEY_FIELDS})
    values["currency"] = receipt.currency or DEFAULT_CURRENCY
    values["purchased_at"] = receipt.purchased_at
    values["tags"] = list(receipt.tags)
    values["line_items"] = [item.as_json() for item in receipt.line_items]
    values["ai_model"] = receipt.ai_model
    values["ai_confidence"] = (
        Decimal(str(receipt.ai_confidence)) if receipt.ai_confidence is not None else None
    )
    return values


def _capture_values(fields: Mapping[str, Any]) -> dict[str, Any]:
    """Normalize user-supplied capture fields into column values."""

    values: dict[str, Any] = {}
    for key, raw in fields.items():
        if key == "currency":
            values[key] = normalize_currency(raw)
        elif key == "payment_last4":
            values[key] = normalize_last4(raw)
        elif key in STRING_FIELDS or key == "file_path":
            values[key] = normalize_text(raw)
        elif key in MONEY_FIELDS:
            values[key] = normalize_money(raw)
        elif key == "purchased_at":
            values[key] = normalize_date(raw)
        elif key == "tags":
            values[key] = normalize_tags(raw)
        elif key == "line_items":
            values[key] = [item.as_json() for item in normalize_line_items(raw)]
        else:
            raise ValueError(f"Unknown receipt field: {key}")
    return values


def _rule_name(raw: Any) -> str:
    name = str(raw if raw is not None else "").strip()
    if not name:
        raise RuleValidationError("Rule name is required")
    return name


def _rule_priority(raw: Any) -> int:
    if raw is None:
        return DEFAULT_RULE_PRIORITY
    try:
        return int(raw)
    except (TypeError, ValueError) as e:
        raise RuleValidationError(f"Rule priority must be an integer: {raw!r}") from e


# ---- SQL store ---------------------------------------------------------------


class SqlReceiptStore:
    """:class:`ReceiptStore` over SQLAlchemy; each call runs in its own transaction."""

    def __init__(self, *, database_url: str | None = None) -> None:
        self._database_url = database_url

    def find(self, receipt_id: str, user_id: int) -> Receipt | None:
        try:
            with session_scope(database_url=self._database_url) as session:
                row = session.scalars(
                    select(RiReceipt).where(RiReceipt.id == receipt_id, RiReceipt.user_id == user_id)
                ).one_or_none()
                return _row_to_receipt(row) if row is not None else None
        except SQLAlchemyError as e:
            raise ReceiptStoreError(f"Failed to load receipt {receipt_id}") from e

    def list_active_rules(self, user_id: int) -> list[Rule]:
        return self._select_rules(user_id, active_only=True)

    def list_rules(self, user_id: int) -> list[Rule]:
        return self._select_rules(user_id, active_only=False)

    def _select_rules(self, user_id: int, *, active_only: bool) -> list[Rule]:
        stmt = select(RiRule).where(RiRule.user_id == user_id)
        if active_only:
            stmt = stmt.where(RiRule.is_active.is_(True))
        stmt = stmt.order_by(RiRule.priority.asc(), RiRule.id.asc())
        try:
            with session_scope(database_url=self._database_url) as session:
                return [_row_to_rule(r) for r in session.scalars(stmt)]
        except SQLAlchemyError as e:
            raise ReceiptStoreError(f"Failed to load rules for user {user_id}") from e

    def save(
        self,
        receipt_id: str,
        user_id: int,
        receipt: Receipt,
        explanation: Sequence[Mapping[str, Any]],
    ) -> Receipt | None:
        """Write processed fields and the explanation in one ``UPDATE``.

        The explanation replaces whatever the previous run stored. Returns the
        reloaded receipt, or ``None`` when no row matches id and owner.
        """

        now = func.now()
        values = _receipt_columns(receipt)
        values["processing_explanation"] = [dict(e) for e in explanation]
        values["processed_at"] = now
        values["updated_at"] = now

        stmt = (
            update(RiReceipt)
            .where(RiReceipt.id == receipt_id, RiReceipt.user_id == user_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            with session_scope(database_url=self._database_url) as session:
                result = session.execute(stmt)
                if result.rowcount == 0:
                    return None
                row = session.scalars(
                    select(RiReceipt).where(RiReceipt.id == receipt_id)
                ).one()
                saved = _row_to_receipt(row)
        except SQLAlchemyError as e:
            raise ReceiptStoreError(f"Failed to save receipt {receipt_id}") from e
        _logger.debug("persistence:saved receipt_id=%s entries=%d", receipt_id, len(explanation))
        return saved

    # ---- Capture and rule CRUD ----------------------------------------------

    def create_receipt(self, user_id: int, **fields: Any) -> Receipt:
        """Insert a new receipt for ``user_id`` and return it.

        Keyword arguments are receipt fields (plus ``file_path``); they are
        normalized the same way AI output is. Unknown names raise ``ValueError``.
        """

        values = _capture_values(fields)
        row = RiReceipt(
            id=str(uuid.uuid4()),
            user_id=user_id,
            tags=values.pop("tags", []),
            line_items=values.pop("line_items", []),
            processing_explanation=[],
            **values,
        )
        try:
            with session_scope(database_url=self._database_url) as session:
                session.add(row)
                session.flush()
                session.refresh(row)
                created = _row_to_receipt(row)
        except SQLAlchemyError as e:
            raise ReceiptStoreError("Failed to create receipt") from e
        _logger.info("persistence:receipt_created receipt_id=%s user_id=%d", created.id, user_id)
        return created

    def create_rule(
        self,
        user_id: int,
        *,
        name: Any,
        conditions: Any = None,
        actions: Any = None,
        priority: Any = None,
        is_active: bool | None = None,
    ) -> Rule:
        row = RiRule(
            user_id=user_id,
            name=_rule_name(name),
            priority=_rule_priority(priority),
            is_active=True if is_active is None else bool(is_active),
            conditions=decode_json_field(conditions),
            actions=decode_json_field(actions),
        )
        try:
            with session_scope(database_url=self._database_url) as session:
                session.add(row)
                session.flush()
                session.refresh(row)
                return _row_to_rule(row)
        except SQLAlchemyError as e:
            raise ReceiptStoreError("Failed to create rule") from e

    def update_rule(self, rule_id: int, user_id: int, **changes: Any) -> Rule | None:
        """Apply ``changes`` to a rule owned by ``user_id``.

        Accepted keys: ``name``, ``priority``, ``is_active``, ``conditions``,
        ``actions``. Returns ``None`` when the rule does not exist for this user.
        """

        unknown = set(changes) - {"name", "priority", "is_active", "conditions", "actions"}
        if unknown:
            raise RuleValidationError(f"Unknown rule field(s): {', '.join(sorted(unknown))}")

        try:
            with session_scope(database_url=self._database_url) as session:
                row = session.scalars(
                    select(RiRule).where(RiRule.id == rule_id, RiRule.user_id == user_id)
                ).one_or_none()
                if row is None:
                    return None
                if "name" in changes:
                    row.name = _rule_name(changes["name"])
                if "priority" in changes:
                    row.priority = _rule_priority(changes["priority"])
                if "is_active" in changes:
                    row.is_active = bool(changes["is_active"])
                if "conditions" in changes:
                    row.conditions = decode_json_field(changes["conditions"])
                if "actions" in changes:
                    row.actions = decode_json_field(changes["actions"])
                row.updated_at = func.now()
                session.flush()
                session.refresh(row)
                return _row_to_rule(row)
        except SQLAlchemyError as e:
            raise ReceiptStoreError(f"Failed to update rule {rule_id}") from e

    def delete_rule(self, rule_id: int, user_id: int) -> bool:
        """Delete a rule; returns whether a row was removed."""

        try:
            with session_scope(database_url=self._database_url) as session:
                result = session.execute(
                    delete(RiRule).where(RiRule.id == rule_id, RiRule.user_id == user_id)
                )
                return bool(result.rowcount)
        except SQLAlchemyError as e:
            raise ReceiptStoreError(f"Failed to delete rule {rule_id}") from e


__all__ = ["ReceiptStore", "SqlReceiptStore"]
