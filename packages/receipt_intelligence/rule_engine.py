"""Deterministic rule engine for receipt classification.

Rules are evaluated in the order given (callers pass them sorted by
``priority`` then ``id``). Every matching rule applies its actions on top of
the output so far:

- ``set``: ``category``/``notes`` take the rule value when it is a string;
  ``tags`` replaces the whole tag set. Last matching rule wins per field.
- ``append_tags``: added to the current tags, deduplicated.

Only ``category``, ``tags`` and ``notes`` are ever changed. Each matching rule
contributes one :class:`~receipt_intelligence.models.RuleEngineStage` to the
explanation; non-matching rules contribute nothing.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .conditions import matches, parse_condition
from .models import Rule, RuleEngineStage
from .normalizers import normalize_tags

UNNAMED_RULE = "Unnamed Rule"


def decode_json_field(value: Any) -> dict[str, Any]:
    """Decode a stored conditions/actions value; anything but an object yields ``{}``."""

    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, str) and value.strip():
        try:
            decoded = json.loads(value)
        except (ValueError, RecursionError):
            return {}
        if isinstance(decoded, dict):
            return decoded
    return {}


@dataclass(frozen=True, slots=True)
class RuleActions:
    """The recognized parts of a rule's ``actions`` object.

    ``None`` means "not requested"; a set ``tags`` of ``[]`` clears the tags.
    """

    category: str | None = None
    notes: str | None = None
    tags: list[str] | None = None
    append_tags: list[str] | None = None

    @classmethod
    def parse(cls, raw: Mapping[str, Any]) -> RuleActions:
        set_part = raw.get("set")
        category = notes = None
        tags: list[str] | None = None
        if isinstance(set_part, Mapping):
            if isinstance(set_part.get("category"), str):
                category = set_part["category"]
            if isinstance(set_part.get("notes"), str):
                notes = set_part["notes"]
            if "tags" in set_part:
                tags = normalize_tags(set_part["tags"])

        append = raw.get("append_tags")
        append_tags = normalize_tags(append) if isinstance(append, list) else None
        return cls(category=category, notes=notes, tags=tags, append_tags=append_tags)

    def applied(self) -> dict[str, Any]:
        """JSON form of what this rule actually applied (for the explanation)."""

        out: dict[str, Any] = {}
        set_part: dict[str, Any] = {}
        if self.category is not None:
            set_part["category"] = self.category
        if self.notes is not None:
            set_part["notes"] = self.notes
        if self.tags is not None:
            set_part["tags"] = list(self.tags)
        if set_part:
            out["set"] = set_part
        if self.append_tags is not None:
            out["append_tags"] = list(self.append_tags)
        return out


@dataclass(slots=True)
class RuleEngineResult:
    category: str | None
    tags: list[str]
    notes: str | None
    explanation: list[RuleEngineStage] = field(default_factory=list)


def apply_rules(snapshot: Mapping[str, Any], rules: Iterable[Rule]) -> RuleEngineResult:
    """Run ``rules`` in order against ``snapshot`` and return the classification.

    Pure: ``snapshot`` and ``rules`` are not modified.
    """

    category = snapshot.get("category")
    notes = snapshot.get("notes")
    tags = normalize_tags(snapshot.get("tags") or [])
    explanation: list[RuleEngineStage] = []

    for rule in rules:
        conditions = decode_json_field(rule.conditions)
        if not matches(snapshot, parse_condition(conditions)):
            continue

        actions = RuleActions.parse(decode_json_field(rule.actions))
        if actions.category is not None:
            category = actions.category
        if actions.notes is not None:
            notes = actions.notes
        if actions.tags is not None:
            tags = list(actions.tags)
        if actions.append_tags:
            tags = normalize_tags(tags + actions.append_tags)

        explanation.append(
            RuleEngineStage(
                rule_id=int(rule.id or 0),
                rule_name=str(rule.name or UNNAMED_RULE),
                conditions=conditions,
                actions_applied=actions.applied(),
            )
        )

    return RuleEngineResult(category=category, tags=tags, notes=notes, explanation=explanation)


__all__ = ["RuleActions", "RuleEngineResult", "apply_rules", "decode_json_field"]
