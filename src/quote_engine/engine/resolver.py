"""
Variable Resolver - Turns placeholder names into numbers.

Resolution order (first match wins):
1. pricingRule.<id>        → computed price of an earlier rule
2. recurring-rate name     → sum of tagged rule outputs, or a fallback
3. service total variable  → Aggregation Engine over that endpoint
4. dotted answer path      → nested answer value
5. root answer field       → answer value
6. anything else           → 0 with an UnresolvedVariable warning
"""
import logging
import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping, Optional

from ..config.settings import Settings, get_settings
from .aggregation import AggregationEngine
from .errors import ForwardReference, ResolutionError, UnresolvedVariable
from .models import EvaluationPass, PriceStore, ServiceEndpoint, Traceable

logger = logging.getLogger(__name__)

MISSING = object()


def to_number(value: Any) -> float:
    """
    Permissive numeric coercion.

    None, empty or non-numeric strings, NaN and infinities all become 0.
    Booleans become 1/0; a one-element list coerces its element.
    """
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float, Decimal)):
        try:
            number = float(value)
        except OverflowError:
            return 0.0
    elif isinstance(value, str):
        text = value.strip()
        if not text or "_" in text:
            return 0.0
        try:
            number = float(text)
        except ValueError:
            return 0.0
    elif isinstance(value, (list, tuple)) and len(value) == 1:
        return to_number(value[0])
    else:
        return 0.0
    return number if math.isfinite(number) else 0.0


def get_nested_value(data: Any, path: str) -> Any:
    """Walk a dotted path through mappings and lists; missing keys give MISSING."""
    current = data
    for key in path.split("."):
        if isinstance(current, Mapping):
            if key not in current:
                return MISSING
            current = current[key]
        elif isinstance(current, (list, tuple)) and key.isdigit():
            index = int(key)
            if index >= len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


@dataclass
class EvaluationContext:
    """Snapshot of everything a resolution may read during one pass."""
    answers: Mapping[str, Any]
    store: PriceStore = field(default_factory=PriceStore)
    services: list[ServiceEndpoint] = field(default_factory=list)
    trace: Traceable = field(default_factory=EvaluationPass)


class VariableResolver:
    """Resolves {{placeholder}} names against an EvaluationContext."""

    def __init__(self, context: EvaluationContext, settings: Optional[Settings] = None):
        self.context = context
        self.settings = settings or get_settings()
        self.aggregator = AggregationEngine(context.store, context.trace)

    def resolve(self, name: str, rule_id: str = None) -> float:
        """
        Resolve a variable, defaulting to 0 on any resolution failure.

        Failures are recorded as warnings on the context trace.
        """
        try:
            return self.resolve_strict(name, rule_id)
        except ResolutionError as e:
            logger.warning("%s (rule %s), defaulting to 0", e, rule_id or "-")
            self.context.trace.add_warning(str(e))
            self.context.trace.add_trace(
                type(e).__name__, f"{{{{{name}}}}} defaulted", "0", rule_id=rule_id
            )
            return 0.0

    def resolve_strict(self, name: str, rule_id: str = None) -> float:
        """
        Resolve a variable, raising ForwardReference / UnresolvedVariable.
        """
        name = name.strip()
        prefix = self.settings.rule_reference_prefix

        # 1. Earlier rule output
        if name.startswith(prefix):
            ref_id = name[len(prefix):]
            price = self.context.store.get(ref_id)
            if price is None:
                raise ForwardReference(name, ref_id)
            return self._resolved(name, "computed price", price.value, rule_id)

        # 2. Recurring rate aggregate
        if name == self.settings.recurring_rate_variable:
            value = self.aggregator.rate_for_tag(
                self.settings.recurring_rate_tag,
                self.settings.recurring_rate_fallback
            )
            return self._resolved(name, "recurring rate", value, rule_id)

        # 3. Service total variable
        for endpoint in self.context.services:
            if endpoint.total_variable_name and endpoint.total_variable_name == name:
                value = self.aggregator.aggregate(endpoint.service_id, endpoint.effective_filter())
                return self._resolved(name, f"service total ({endpoint.service_id})", value, rule_id)

        answers = self.context.answers

        # 4. Nested answer
        if "." in name:
            raw = get_nested_value(answers, name)
            if raw is not MISSING and raw is not None:
                return self._resolved(name, "answers", to_number(raw), rule_id)

        # 5. Root answer field
        raw = answers.get(name) if isinstance(answers, Mapping) else None
        if raw is not None:
            return self._resolved(name, "answers", to_number(raw), rule_id)

        raise UnresolvedVariable(name)

    def _resolved(self, name: str, source: str, value: float, rule_id: Optional[str]) -> float:
        self.context.trace.add_trace("Resolve", f"{{{{{name}}}}} from {source}", f"{value:g}", rule_id=rule_id)
        return value
