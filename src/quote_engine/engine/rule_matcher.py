"""
Rule Matcher - Decides whether a catalog rule applies to a set of answers.

Used by the rule evaluator before pricing each rule. A rule applies when it
is active, its service is selected (if a selection is given) and its
trigger condition, if any, holds.
"""
import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .models import PricingRule
from .resolver import MISSING, get_nested_value

logger = logging.getLogger(__name__)

_NON_NUMERIC = re.compile(r"[^0-9.\-]")

NUMERIC_OPERATORS = {
    'lessThan': lambda a, b: a < b,
    'lessThanOrEqual': lambda a, b: a <= b,
    'greaterThan': lambda a, b: a > b,
    'greaterThanOrEqual': lambda a, b: a >= b,
}


@dataclass
class RuleMatch:
    """Outcome of matching one rule, with the reason for tracing."""
    rule_id: str
    applies: bool
    match_reason: str


def _is_empty(value: Any) -> bool:
    return value is MISSING or value is None or value == '' or (
        isinstance(value, (list, tuple)) and len(value) == 0
    )


def _text(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def _parse_amount(value: Any) -> Optional[float]:
    """Parse '$1,250.00'-style text; None if nothing numeric remains."""
    try:
        return float(_NON_NUMERIC.sub('', _text(value)))
    except ValueError:
        return None


def evaluate_condition(
    answers: Mapping[str, Any],
    trigger_field: str,
    required_value: Optional[str],
    comparison_logic: str
) -> bool:
    """
    Evaluate a trigger condition against the answers.

    Text operators compare case-insensitively; numeric operators strip
    currency formatting first. An empty field only satisfies isEmpty.
    """
    field_value = get_nested_value(answers, trigger_field)
    required = '' if required_value is None else str(required_value)

    if comparison_logic == 'isEmpty':
        return _is_empty(field_value)
    if comparison_logic == 'isNotEmpty':
        return not _is_empty(field_value)

    if _is_empty(field_value):
        return False

    if comparison_logic in ('equals', 'notEquals'):
        same = _text(field_value).strip().lower() == required.strip().lower()
        return same if comparison_logic == 'equals' else not same

    if comparison_logic in ('contains', 'notContains', 'includes'):
        needle = required.lower()
        if isinstance(field_value, (list, tuple)):
            found = any(needle in _text(item).lower() for item in field_value)
        else:
            found = needle in _text(field_value).lower()
        return not found if comparison_logic == 'notContains' else found

    if comparison_logic in NUMERIC_OPERATORS:
        left = _parse_amount(field_value)
        right = _parse_amount(required)
        if left is None or right is None:
            return False
        return NUMERIC_OPERATORS[comparison_logic](left, right)

    logger.warning("Unknown comparison logic: %s", comparison_logic)
    return False


class RuleMatcher:
    """
    Matches catalog rules against answers and the selected services.
    """

    def __init__(self, selected_services: Optional[list[str]] = None):
        self.selected_services = (
            None if selected_services is None else set(selected_services)
        )

    def match(self, rule: PricingRule, answers: Mapping[str, Any]) -> RuleMatch:
        """Check one rule; the reason names the first failing (or all passing) checks."""
        if not rule.active:
            return RuleMatch(rule.rule_id, False, "inactive")

        reasons = []

        if self.selected_services is not None and rule.service_id:
            if rule.service_id not in self.selected_services:
                return RuleMatch(rule.rule_id, False, f"service {rule.service_id} not selected")
            reasons.append(f"service={rule.service_id}")

        if rule.has_trigger:
            if not evaluate_condition(
                answers, rule.trigger_field, rule.required_value, rule.comparison_logic
            ):
                return RuleMatch(
                    rule.rule_id, False,
                    f"{rule.trigger_field} {rule.comparison_logic} '{rule.required_value or ''}' not met"
                )
            reasons.append(f"{rule.trigger_field} {rule.comparison_logic} '{rule.required_value or ''}'")

        return RuleMatch(rule.rule_id, True, ", ".join(reasons) if reasons else "default")

    def is_selected(self, service_id: str) -> bool:
        """True when no selection was given or the service is in it."""
        return self.selected_services is None or service_id in self.selected_services
