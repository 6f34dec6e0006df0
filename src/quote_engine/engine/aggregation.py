"""
Aggregation Engine - Sums computed prices into service totals.

Selection is driven by a FilterSpec (pricing type and billing frequency
include/exclude sets) followed by a minimum-fee floor. When no computed
price carries service metadata, rule ids are matched by service id prefix
instead.
"""
import logging
from typing import Optional

from .models import FilterSpec, PriceStore, Traceable, round_half_up

logger = logging.getLogger(__name__)


class AggregationEngine:
    """
    Aggregates the computed-price store of a single evaluation pass.

    Read-only over the store; safe to call any number of times mid-pass.
    """

    def __init__(self, store: PriceStore, trace: Optional[Traceable] = None):
        self.store = store
        self.trace = trace

    def aggregate(self, service_id: str, filter_spec: Optional[FilterSpec] = None) -> float:
        """
        Total for one service under a filter.

        1. Metadata mode: sum prices for the service that pass the filter
        2. Degraded mode (no metadata anywhere): sum prices whose rule id
           starts with the service id, ignoring type/frequency filters
        3. Raise the total to the filter's minimum fee if it falls short
        """
        spec = filter_spec or FilterSpec()
        total = 0.0
        matched = []

        if self.store.has_metadata:
            for price in self.store:
                if price.service_id == service_id and spec.matches(price):
                    total += price.value
                    matched.append(price.rule_id)
            mode = "metadata"
        else:
            for price in self.store:
                if price.rule_id.startswith(service_id):
                    total += price.value
                    matched.append(price.rule_id)
            mode = "prefix fallback"
            logger.debug("No price metadata available, matching '%s' by rule id prefix", service_id)

        total = round_half_up(total)
        self._record(
            "Aggregate",
            f"{service_id}: {len(matched)} matched rule(s) via {mode}"
            + (f" ({', '.join(matched)})" if matched else ""),
            total
        )

        if spec.minimum_fee > 0 and total < spec.minimum_fee:
            self._record("Minimum Fee", f"{service_id}: raised {total:.2f} to minimum", spec.minimum_fee)
            total = float(spec.minimum_fee)

        return total

    def rate_for_tag(self, tag: str, fallback: float) -> float:
        """
        Sum of positive computed prices whose rule id contains a tag.

        Returns the fallback when nothing matches.
        """
        total = 0.0
        for price in self.store:
            if tag in price.rule_id and price.value > 0:
                total += price.value

        if total > 0:
            total = round_half_up(total)
            self._record("Recurring Rate", f"Sum of '{tag}' rule outputs", total)
            return total

        self._record("Recurring Rate", f"No '{tag}' charges found, using fallback", fallback)
        return float(fallback)

    def _record(self, step: str, description: str, value: float):
        if self.trace is not None:
            self.trace.add_trace(step, description, f"{value:.2f}")
