"""
Quote Engine - Composes a full quote from one rule evaluation pass.

Resolution order:
1. Evaluate the rule catalog once (forward-only) into a price store
2. Resolve each active service's total variable through the resolver
3. Build a per-service monthly / one-time / annual breakdown
4. Roll the breakdown up into the top-level totals
"""
import hashlib
import json
import logging
from dataclasses import asdict
from typing import Any, Optional

from ..config.settings import Settings, get_settings
from .models import (
    ANNUAL, MONTHLY, ONE_TIME_FEE,
    PricingRule, Quote, QuoteRequest, ServiceEndpoint, ServiceQuote, round_half_up,
)
from .resolver import EvaluationContext, VariableResolver
from .rule_evaluator import RuleEvaluator

logger = logging.getLogger(__name__)


def catalog_hash(rules: list[PricingRule], services: list[ServiceEndpoint]) -> str:
    """Short SHA256 fingerprint of the catalogs a quote was priced with."""
    payload = json.dumps(
        {
            "rules": [asdict(r) for r in rules],
            "services": [asdict(s) for s in services],
        },
        sort_keys=True,
        default=sorted,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:12]


class QuoteEngine:
    """
    Prices answer sets against a rule catalog and a service catalog.

    The catalogs are swapped wholesale on reload; a calculation works on the
    lists it captured when it started.
    """

    def __init__(
        self,
        rules: list[PricingRule],
        services: Optional[list[ServiceEndpoint]] = None,
        settings: Optional[Settings] = None
    ):
        self.settings = settings or get_settings()
        self.evaluator = RuleEvaluator(self.settings)
        self._set_catalogs(list(rules), list(services or []))

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> 'QuoteEngine':
        """Build an engine from the CSV catalogs named in settings."""
        from ..services.catalog_service import CatalogService

        settings = settings or get_settings()
        rules, services = CatalogService(settings).load()
        return cls(rules, services, settings)

    def _set_catalogs(self, rules: list[PricingRule], services: list[ServiceEndpoint]):
        self.rules = rules
        self.services = services
        self.catalog_hash = catalog_hash(rules, services)

    def reload_data(self):
        """Reload both catalogs from disk."""
        from ..services.catalog_service import CatalogService

        rules, services = CatalogService(self.settings).load()
        self._set_catalogs(rules, services)
        logger.info("Reloaded %d rules and %d services", len(rules), len(services))

    def calculate_quote(self, answers: dict[str, Any], selected_services: Optional[list[str]] = None) -> dict:
        """
        Calculate a quote and return it as a plain dict.

        Args:
            answers: The answer set (nested dicts allowed)
            selected_services: Service ids to price, or None for all

        Returns:
            Dict with totals, per-service breakdown, prices and warnings
        """
        quote = self.calculate(QuoteRequest(answers=answers, selected_services=selected_services))
        return quote.to_dict()

    def calculate(self, request: QuoteRequest) -> Quote:
        """
        Calculate a quote with full traceability.

        Args:
            request: QuoteRequest with answers and optional service selection

        Returns:
            Quote dataclass with totals, breakdown, trace and warnings
        """
        rules, services = self.rules, self.services
        answers = request.answers or {}

        # 1. Evaluation pass
        evaluation = self.evaluator.evaluate_all(
            rules, answers, services, request.selected_services
        )

        quote = Quote(
            prices=list(evaluation.store),
            trace=list(evaluation.trace),
            warnings=list(evaluation.warnings),
            catalog_hash=self.catalog_hash,
        )

        # 2. Named totals
        context = EvaluationContext(
            answers=answers, store=evaluation.store, services=services, trace=quote
        )
        resolver = VariableResolver(context, self.settings)
        for endpoint in services:
            if not endpoint.active or not endpoint.total_variable_name:
                continue
            quote.totals[endpoint.total_variable_name] = resolver.resolve(
                endpoint.total_variable_name
            )

        # 3. Per-service breakdown
        quote.services = self._breakdown(quote, services)

        # 4. Top-level totals
        quote.total_monthly_fees = round_half_up(sum(s.monthly_fee for s in quote.services))
        quote.total_one_time_fees = round_half_up(sum(s.one_time_fee for s in quote.services))
        quote.total_annual_fees = round_half_up(sum(s.annual_fee for s in quote.services))
        quote.total_annual = round_half_up(
            quote.total_monthly_fees * 12 + quote.total_one_time_fees + quote.total_annual_fees
        )
        quote.add_trace("Total", "Monthly fees", f"{quote.total_monthly_fees:.2f}")
        quote.add_trace("Total", "Annualised", f"{quote.total_annual:.2f}")

        if not quote.has_pricing:
            quote.add_warning("No pricing rules produced a non-zero total")

        return quote

    def _breakdown(self, quote: Quote, services: list[ServiceEndpoint]) -> list[ServiceQuote]:
        titles = {}
        order = []
        for endpoint in services:
            if endpoint.service_id not in titles:
                titles[endpoint.service_id] = endpoint.title or endpoint.service_id
                order.append(endpoint.service_id)
        for price in quote.prices:
            if price.service_id and price.service_id not in titles:
                titles[price.service_id] = price.service_id
                order.append(price.service_id)

        lines = []
        for service_id in order:
            line = ServiceQuote(service_id=service_id, title=titles[service_id])
            monthly = one_time = annual = 0.0
            for price in quote.prices:
                if price.service_id != service_id or price.value == 0:
                    continue
                if price.billing_frequency == MONTHLY:
                    monthly += price.value
                elif price.billing_frequency == ONE_TIME_FEE:
                    one_time += price.value
                elif price.billing_frequency == ANNUAL:
                    annual += price.value
                else:
                    continue
                line.rule_ids.append(price.rule_id)

            if not line.rule_ids:
                continue

            # Minimum fees of single-frequency endpoints raise the matching bucket
            buckets = {MONTHLY: monthly, ONE_TIME_FEE: one_time, ANNUAL: annual}
            for endpoint in services:
                if endpoint.service_id != service_id or not endpoint.active:
                    continue
                minimum = endpoint.effective_filter().minimum_fee
                frequency = endpoint.billing_frequency
                if minimum > 0 and frequency in buckets and buckets[frequency] < minimum:
                    quote.add_trace("Minimum Fee", f"{service_id} {frequency} raised to minimum", f"{minimum:.2f}")
                    buckets[frequency] = minimum

            line.monthly_fee = round_half_up(buckets[MONTHLY])
            line.one_time_fee = round_half_up(buckets[ONE_TIME_FEE])
            line.annual_fee = round_half_up(buckets[ANNUAL])
            line.annual_price = round_half_up(line.monthly_fee * 12 + line.one_time_fee + line.annual_fee)
            lines.append(line)
        return lines
