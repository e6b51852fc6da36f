"""In-memory ``ReceiptStore`` for orchestrator tests."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from receipt_intelligence.errors import ReceiptStoreError
from receipt_intelligence.models import Receipt, Rule


class InMemoryReceiptStore:
    def __init__(
        self,
        receipts: Sequence[Receipt] = (),
        rules: Sequence[Rule] = (),
        *,
        fail_on_save: bool = False,
    ) -> None:
        self.receipts: dict[str, Receipt] = {r.id: r for r in receipts}
        self.rules: list[Rule] = list(rules)
        self.saves: list[tuple[str, int, Receipt, list[dict[str, Any]]]] = []
        self._fail_on_save = fail_on_save

    def find(self, receipt_id: str, user_id: int) -> Receipt | None:
        receipt = self.receipts.get(receipt_id)
        if receipt is None or receipt.user_id != user_id:
            return None
        return receipt

    def list_active_rules(self, user_id: int) -> list[Rule]:
        own = [r for r in self.rules if r.user_id == user_id and r.is_active]
        return sorted(own, key=lambda r: (r.priority, r.id))

    def save(
        self,
        receipt_id: str,
        user_id: int,
        receipt: Receipt,
        explanation: Sequence[Mapping[str, Any]],
    ) -> Receipt | None:
        if self._fail_on_save:
            raise ReceiptStoreError("disk full")
        if self.find(receipt_id, user_id) is None:
            return None
        entries = [dict(e) for e in explanation]
        self.saves.append((receipt_id, user_id, receipt, entries))
        now = datetime.now(UTC)
        saved = replace(
            receipt,
            currency=receipt.currency or "USD",
            processing_explanation=tuple(entries),
            processed_at=now,
            updated_at=now,
        )
        self.receipts[receipt_id] = saved
        return saved
