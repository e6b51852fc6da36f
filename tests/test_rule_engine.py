import json

from receipt_intelligence.models import Receipt, Rule
from receipt_intelligence.rule_engine import RuleActions, apply_rules, decode_json_field


def _rule(rule_id: int, conditions, actions, *, name: str = "", priority: int = 100) -> Rule:
    return Rule(
        id=rule_id,
        user_id=1,
        name=name or f"rule-{rule_id}",
        priority=priority,
        conditions=conditions,
        actions=actions,
    )


def _snapshot(**overrides):
    return Receipt(id="r1", user_id=1, **overrides).snapshot()


def test_starbucks_scenario():
    rule = _rule(
        7,
        {"all": [{"field": "merchant", "operator": "contains", "value": "Starbucks"}]},
        {"set": {"category": "Coffee"}, "append_tags": ["coffee"]},
        name="Coffee shops",
    )
    result = apply_rules(_snapshot(merchant="STARBUCKS #4021"), [rule])

    assert result.category == "Coffee"
    assert "coffee" in result.tags
    assert len(result.explanation) == 1
    entry = result.explanation[0].model_dump(mode="json")
    assert entry == {
        "stage": "rule_engine",
        "rule_id": 7,
        "rule_name": "Coffee shops",
        "matched": True,
        "conditions": {
            "all": [{"field": "merchant", "operator": "contains", "value": "Starbucks"}]
        },
        "actions_applied": {"set": {"category": "Coffee"}, "append_tags": ["coffee"]},
    }


def test_non_matching_rules_leave_no_trace():
    rule = _rule(1, {"field": "merchant", "value": "Peet's"}, {"set": {"category": "Coffee"}})
    result = apply_rules(_snapshot(merchant="Shell", category="Fuel", tags=("car",)), [rule])

    assert result.category == "Fuel"
    assert result.tags == ["car"]
    assert result.explanation == []


def test_last_matching_rule_wins_and_append_tags_accumulate():
    always = {"all": []}
    rules = [
        _rule(1, always, {"set": {"category": "A", "notes": "first"}, "append_tags": ["x"]}),
        _rule(2, always, {"set": {"category": "B"}, "append_tags": ["y", "x"]}),
    ]
    result = apply_rules(_snapshot(tags=("x",)), rules)

    assert result.category == "B"
    assert result.notes == "first"
    assert result.tags == ["x", "y"]
    assert [e.rule_id for e in result.explanation] == [1, 2]


def test_set_tags_replaces_then_append_extends():
    rule = _rule(1, {"all": []}, {"set": {"tags": " a, b ,a"}, "append_tags": [" c ", "", "a"]})
    result = apply_rules(_snapshot(tags=("old",)), [rule])
    assert result.tags == ["a", "b", "c"]


def test_non_string_set_values_are_ignored():
    rule = _rule(1, {"all": []}, {"set": {"category": 5, "notes": None, "merchant": "Evil"}})
    result = apply_rules(_snapshot(category="Keep", notes="Also keep"), [rule])

    assert result.category == "Keep"
    assert result.notes == "Also keep"
    assert result.explanation[0].actions_applied == {}


def test_rules_stored_as_json_strings_are_decoded():
    rule = _rule(
        3,
        json.dumps({"field": "total", "operator": "gte", "value": 100}),
        json.dumps({"set": {"category": "Big"}}),
    )
    result = apply_rules(_snapshot(total=250), [rule])
    assert result.category == "Big"
    assert result.explanation[0].conditions == {"field": "total", "operator": "gte", "value": 100}


def test_malformed_rule_json_degrades_to_no_op():
    rules = [
        _rule(1, "{not json", {"set": {"category": "X"}}),
        _rule(2, {"all": []}, "[1, 2]"),
    ]
    result = apply_rules(_snapshot(category="Orig"), rules)

    assert result.category == "Orig"
    assert [e.rule_id for e in result.explanation] == [2]
    assert result.explanation[0].actions_applied == {}


def test_output_tags_never_contain_duplicates_or_blanks():
    rule = _rule(1, {"all": []}, {"append_tags": ["  dup ", "dup", "", "   ", "new"]})
    result = apply_rules({"tags": ["dup", " dup", "", "keep"]}, [rule])
    assert result.tags == ["dup", "keep", "new"]


def test_unnamed_rule_gets_placeholder_name():
    rule = Rule(id=0, user_id=1, name="", conditions={"all": []}, actions={})
    result = apply_rules({}, [rule])
    assert result.explanation[0].rule_name == "Unnamed Rule"
    assert result.explanation[0].rule_id == 0


def test_decode_json_field_and_actions_parse():
    assert decode_json_field({"a": 1}) == {"a": 1}
    assert decode_json_field('{"a": 1}') == {"a": 1}
    assert decode_json_field("[]") == {}
    assert decode_json_field("   ") == {}
    assert decode_json_field(None) == {}

    actions = RuleActions.parse({"set": {"category": "C", "tags": []}, "append_tags": "not-a-list"})
    assert actions == RuleActions(category="C", notes=None, tags=[], append_tags=None)
    assert actions.applied() == {"set": {"category": "C", "tags": []}}


def test_rule_json_with_oversized_number_degrades_to_no_op():
    huge = "9" * 5000
    rules = [
        _rule(1, '{"field": "total", "operator": "gt", "value": ' + huge + "}", {"set": {"category": "X"}}),
        _rule(2, {"all": []}, '{"set": {"notes": ' + huge + "}}"),
    ]
    result = apply_rules(_snapshot(category="Orig"), rules)

    assert result.category == "Orig"
    assert [e.rule_id for e in result.explanation] == [2]
    assert result.explanation[0].actions_applied == {}
    assert decode_json_field('{"a": ' + huge + "}") == {}
