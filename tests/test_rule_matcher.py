"""
Trigger conditions and service selection.
"""
import pytest

from quote_engine.engine.models import PricingRule
from quote_engine.engine.rule_matcher import RuleMatcher, evaluate_condition

ANSWERS = {
    "entityType": "S-Corp",
    "hasRentals": "Yes",
    "states": ["California", "Nevada"],
    "revenue": "$1,250,000",
    "monthsBehind": 3,
    "notes": "",
    "payroll": {"employees": "12"},
    "isExisting": True,
}


@pytest.mark.parametrize("field, required, logic, expected", [
    ("entityType", "s-corp", "equals", True),
    ("entityType", " S-Corp ", "equals", True),
    ("entityType", "LLC", "equals", False),
    ("entityType", "LLC", "notEquals", True),
    ("isExisting", "true", "equals", True),
    ("states", "nevada", "contains", True),
    ("states", "Texas", "contains", False),
    ("states", "Texas", "notContains", True),
    ("entityType", "corp", "includes", True),
    ("revenue", "1000000", "greaterThan", True),
    ("revenue", "$2,000,000", "lessThan", True),
    ("monthsBehind", "3", "greaterThanOrEqual", True),
    ("monthsBehind", "3", "lessThanOrEqual", True),
    ("monthsBehind", "3", "lessThan", False),
    ("payroll.employees", "10", "greaterThan", True),
    ("notes", None, "isEmpty", True),
    ("missing", None, "isEmpty", True),
    ("entityType", None, "isNotEmpty", True),
    ("notes", None, "isNotEmpty", False),
    ("missing", "x", "notEquals", False),
    ("notes", "x", "notContains", False),
    ("entityType", "abc", "greaterThan", False),
    ("entityType", "S-Corp", "matchesRegex", False),
])
def test_evaluate_condition(field, required, logic, expected):
    assert evaluate_condition(ANSWERS, field, required, logic) is expected


def test_inactive_rule_never_applies():
    rule = PricingRule(rule_id="r", active=False)
    match = RuleMatcher().match(rule, ANSWERS)
    assert not match.applies
    assert match.match_reason == "inactive"


def test_rule_without_trigger_always_applies():
    match = RuleMatcher().match(PricingRule(rule_id="r"), ANSWERS)
    assert match.applies
    assert match.match_reason == "default"


def test_trigger_condition():
    rule = PricingRule(
        rule_id="rentals", trigger_field="hasRentals",
        required_value="yes", comparison_logic="equals"
    )
    assert RuleMatcher().match(rule, ANSWERS).applies
    assert not RuleMatcher().match(rule, {"hasRentals": "No"}).applies


def test_trigger_field_without_logic_is_ignored():
    rule = PricingRule(rule_id="r", trigger_field="hasRentals", required_value="No")
    assert RuleMatcher().match(rule, ANSWERS).applies


def test_service_selection():
    rule = PricingRule(rule_id="tax-base", service_id="individual-tax")
    assert RuleMatcher(None).match(rule, ANSWERS).applies
    assert RuleMatcher(["individual-tax"]).match(rule, ANSWERS).applies

    skipped = RuleMatcher(["bookkeeping"]).match(rule, ANSWERS)
    assert not skipped.applies
    assert "not selected" in skipped.match_reason


def test_rule_without_service_ignores_selection():
    rule = PricingRule(rule_id="global")
    assert RuleMatcher([]).match(rule, ANSWERS).applies


def test_is_selected():
    assert RuleMatcher().is_selected("anything")
    assert RuleMatcher(["a"]).is_selected("a")
    assert not RuleMatcher(["a"]).is_selected("b")
