"""
Rule Evaluator - Single forward pass over the pricing rule catalog.

Per rule, in catalog order:
1. Skip rules the matcher rejects and duplicate rule ids
2. Compute a raw value (formula, simple or per-unit)
3. Clamp to the rule's minimum / maximum
4. Round to 2 decimals and append to the computed-price store

A failing rule records 0 and never stops the pass.
"""
import logging
from typing import Any, Mapping, Optional

from ..config.settings import Settings, get_settings
from . import expression
from .errors import ExpressionError
from .models import (
    FORMULA, PER_UNIT, SIMPLE,
    ComputedPrice, EvaluationPass, PricingRule, ServiceEndpoint, round_half_up,
)
from .resolver import EvaluationContext, MISSING, VariableResolver, get_nested_value, to_number
from .rule_matcher import RuleMatcher

logger = logging.getLogger(__name__)

EVALUATED = "evaluated"
FAILED = "failed"
SKIPPED = "skipped"


def clamp(value: float, minimum: Optional[float] = None, maximum: Optional[float] = None) -> float:
    """Apply optional lower then upper bound."""
    if minimum is not None and value < minimum:
        value = minimum
    if maximum is not None and value > maximum:
        value = maximum
    return value


class RuleEvaluator:
    """
    Evaluates an ordered rule catalog into a computed-price store.

    Stateless between calls; every evaluate_all() builds its own pass.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def evaluate_all(
        self,
        rules: list[PricingRule],
        answers: Mapping[str, Any],
        services: Optional[list[ServiceEndpoint]] = None,
        selected_services: Optional[list[str]] = None
    ) -> EvaluationPass:
        """
        Run one pass. selected_services=None means no service filtering.
        """
        result = EvaluationPass()
        context = EvaluationContext(
            answers=answers or {},
            store=result.store,
            services=list(services or []),
            trace=result,
        )
        resolver = VariableResolver(context, self.settings)
        matcher = RuleMatcher(selected_services)
        discount_active = (
            selected_services is not None
            and self.settings.discount_service_id in selected_services
        )

        for rule in rules:
            if rule.rule_id in result.store or rule.rule_id in result.outcomes:
                result.add_warning(f"Duplicate rule id '{rule.rule_id}' ignored")
                result.add_trace("Skip", "duplicate rule id", rule_id=rule.rule_id)
                logger.warning("Duplicate rule id %s ignored", rule.rule_id)
                continue

            match = matcher.match(rule, context.answers)
            if not match.applies:
                result.outcomes[rule.rule_id] = SKIPPED
                result.add_trace("Skip", match.match_reason, rule_id=rule.rule_id)
                continue

            if rule.calculation_method == FORMULA:
                raw, outcome = self._evaluate_formula(rule, resolver, result)
            else:
                raw, outcome = self._evaluate_fixed(rule, context.answers, discount_active, result)

            value = round_half_up(clamp(raw, rule.minimum_value, rule.maximum_value))
            if value != raw:
                result.add_trace("Clamp/Round", f"{raw:g} → {value:.2f}", rule_id=rule.rule_id)

            result.store.add(ComputedPrice.from_rule(rule, value))
            result.outcomes[rule.rule_id] = outcome
            result.add_trace("Price", f"{rule.name or rule.rule_id} ({match.match_reason})",
                             f"{value:.2f}", rule_id=rule.rule_id)
            logger.debug("Rule %s → %.2f (%s)", rule.rule_id, value, outcome)

        return result

    def _evaluate_formula(
        self,
        rule: PricingRule,
        resolver: VariableResolver,
        result: EvaluationPass
    ) -> tuple[float, str]:
        source = (rule.expression or "").strip()
        if not source:
            result.add_trace("Formula", "empty expression", "0", rule_id=rule.rule_id)
            return 0.0, EVALUATED

        # 1. Resolve every placeholder once
        values = {
            name: resolver.resolve(name, rule.rule_id)
            for name in expression.extract_placeholders(source)
        }

        # 2. Substitute and evaluate
        substituted = expression.substitute(source, values)
        result.add_trace("Formula", substituted, rule_id=rule.rule_id)
        try:
            return expression.evaluate(substituted), EVALUATED
        except ExpressionError as e:
            logger.warning("Rule %s failed: %s", rule.rule_id, e)
            result.add_warning(f"Rule '{rule.rule_id}' failed: {e}")
            result.add_trace(type(e).__name__, str(e), "0", rule_id=rule.rule_id)
            return 0.0, FAILED

    def _evaluate_fixed(
        self,
        rule: PricingRule,
        answers: Mapping[str, Any],
        discount_active: bool,
        result: EvaluationPass
    ) -> tuple[float, str]:
        if rule.calculation_method == PER_UNIT:
            if rule.quantity_source_field and rule.unit_price:
                # An unanswered quantity counts as 0 units
                raw = get_nested_value(answers, rule.quantity_source_field)
                quantity = 0.0 if raw is MISSING else to_number(raw)
                price = quantity * rule.unit_price
                result.add_trace(
                    "Per Unit",
                    f"{quantity:g} {rule.unit_name or 'units'} × {rule.unit_price:g}",
                    f"{price:.2f}", rule_id=rule.rule_id
                )
            else:
                price = rule.base_price
                result.add_trace("Per Unit", "no quantity source or unit price, using base price",
                                 f"{price:.2f}", rule_id=rule.rule_id)
        else:
            if rule.calculation_method != SIMPLE:
                result.add_warning(
                    f"Rule '{rule.rule_id}' has unknown calculation method "
                    f"'{rule.calculation_method}', using base price"
                )
            price = rule.base_price

        # Discount when the trigger service is selected
        if discount_active and rule.discount_eligible and rule.discount_percentage > 0:
            discounted = price * (1 - rule.discount_percentage)
            result.add_trace(
                "Discount",
                f"{rule.discount_percentage:.0%} ({self.settings.discount_service_id} selected)",
                f"{discounted:.2f}", rule_id=rule.rule_id
            )
            price = discounted

        return price, EVALUATED
