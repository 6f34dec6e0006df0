"""
Data models for the quote engine.

Uses dataclasses for structured, type-safe data representation. Catalog rows
(PricingRule, ServiceEndpoint, FilterSpec) are frozen because the engine
treats catalogs as read-only input.
"""
from dataclasses import dataclass, field, replace
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterator, Optional


BASE_SERVICE = "Base Service"
ADD_ON = "Add-on"
DISCOUNT = "Discount"

MONTHLY = "Monthly"
ONE_TIME_FEE = "One-Time Fee"
ANNUAL = "Annual"

DEFAULT_INCLUDE_TYPES = frozenset({BASE_SERVICE, ADD_ON})
DEFAULT_INCLUDE_BILLING_FREQUENCIES = frozenset({MONTHLY, ONE_TIME_FEE, ANNUAL})

# Calculation methods
FORMULA = "formula"
SIMPLE = "simple"
PER_UNIT = "per-unit"
CALCULATION_METHODS = (FORMULA, SIMPLE, PER_UNIT)


def round_half_up(value: float, places: int = 2) -> float:
    """Round to a fixed number of decimals, halves away from zero."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(repr(float(value))).quantize(quantum, rounding=ROUND_HALF_UP))


@dataclass
class TraceStep:
    """A single step in the evaluation trace."""
    step: str
    description: str
    value: Optional[str] = None
    rule_id: Optional[str] = None


class Traceable:
    """Trace and warning helpers shared by pass and quote results."""
    trace: list[TraceStep]
    warnings: list[str]

    def add_trace(self, step: str, description: str, value: str = None, rule_id: str = None):
        """Add a step to the trace."""
        self.trace.append(TraceStep(step=step, description=description, value=value, rule_id=rule_id))

    def add_warning(self, warning: str):
        """Add a warning, ignoring exact duplicates."""
        if warning not in self.warnings:
            self.warnings.append(warning)

    def get_trace_text(self) -> str:
        """Get human-readable trace as formatted text."""
        lines = []
        for t in self.trace:
            prefix = f"[{t.rule_id}] " if t.rule_id else ""
            if t.value is not None:
                lines.append(f"• {prefix}{t.step}: {t.description} = {t.value}")
            else:
                lines.append(f"• {prefix}{t.step}: {t.description}")
        return "\n".join(lines)


@dataclass(frozen=True)
class PricingRule:
    """
    One row of the pricing rule catalog.

    Only rule_id and expression matter for formula evaluation; the rest is
    catalog metadata carried through to the computed price or used by the
    rule matcher.
    """
    rule_id: str
    expression: str = ""
    minimum_value: Optional[float] = None
    maximum_value: Optional[float] = None

    service_id: Optional[str] = None
    name: str = ""
    pricing_type: Optional[str] = None
    billing_frequency: Optional[str] = None
    active: bool = True
    calculation_method: str = FORMULA

    # simple / per-unit pricing
    base_price: float = 0.0
    unit_price: Optional[float] = None
    unit_name: Optional[str] = None
    quantity_source_field: Optional[str] = None

    # Trigger condition
    trigger_field: Optional[str] = None
    required_value: Optional[str] = None
    comparison_logic: Optional[str] = None

    discount_eligible: bool = False
    discount_percentage: float = 0.0

    @property
    def has_trigger(self) -> bool:
        # isEmpty / isNotEmpty need no required value
        return bool(self.trigger_field and self.comparison_logic)


@dataclass(frozen=True)
class ComputedPrice:
    """The evaluated, clamped and rounded output of one pricing rule."""
    rule_id: str
    value: float
    service_id: Optional[str] = None
    pricing_type: Optional[str] = None
    billing_frequency: Optional[str] = None

    @property
    def has_metadata(self) -> bool:
        return self.service_id is not None

    @classmethod
    def from_rule(cls, rule: PricingRule, value: float) -> 'ComputedPrice':
        return cls(
            rule_id=rule.rule_id,
            value=value,
            service_id=rule.service_id,
            pricing_type=rule.pricing_type,
            billing_frequency=rule.billing_frequency,
        )


class PriceStore:
    """
    Append-only store of computed prices for one evaluation pass.

    Keeps insertion order (catalog order) plus an index by rule id.
    """

    def __init__(self, prices: Optional[list[ComputedPrice]] = None):
        self._entries: list[ComputedPrice] = []
        self._index: dict[str, ComputedPrice] = {}
        for price in prices or []:
            self.add(price)

    def add(self, price: ComputedPrice):
        """Append a computed price. Rule ids are unique within a pass."""
        if price.rule_id in self._index:
            raise KeyError(f"Rule '{price.rule_id}' already has a computed price")
        self._entries.append(price)
        self._index[price.rule_id] = price

    def get(self, rule_id: str) -> Optional[ComputedPrice]:
        return self._index.get(rule_id)

    @property
    def has_metadata(self) -> bool:
        """True if at least one entry carries service metadata."""
        return any(p.has_metadata for p in self._entries)

    def values(self) -> dict[str, float]:
        """Rule id → value, in evaluation order."""
        return {p.rule_id: p.value for p in self._entries}

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._index

    def __iter__(self) -> Iterator[ComputedPrice]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(frozen=True)
class FilterSpec:
    """Include/exclude predicate selecting which prices feed a service total."""
    include_types: frozenset = DEFAULT_INCLUDE_TYPES
    exclude_types: frozenset = frozenset()
    include_billing_frequencies: frozenset = DEFAULT_INCLUDE_BILLING_FREQUENCIES
    exclude_billing_frequencies: frozenset = frozenset()
    minimum_fee: float = 0.0

    def matches(self, price: ComputedPrice) -> bool:
        return (
            price.pricing_type in self.include_types
            and price.pricing_type not in self.exclude_types
            and price.billing_frequency in self.include_billing_frequencies
            and price.billing_frequency not in self.exclude_billing_frequencies
        )

    def narrowed_to(self, billing_frequency: str) -> 'FilterSpec':
        """Restrict included billing frequencies to a single one."""
        if billing_frequency in self.include_billing_frequencies:
            allowed = frozenset({billing_frequency})
        else:
            allowed = frozenset()
        return replace(self, include_billing_frequencies=allowed)

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> 'FilterSpec':
        """
        Build from catalog JSON. Accepts camelCase (catalog) or snake_case
        keys; missing keys keep the defaults.

        Raises:
            TypeError: data is not an object, or a set key is not a list of strings
            ValueError: minimumFee is not a number
        """
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise TypeError(f"aggregation rules must be an object, got {type(data).__name__}")

        def pick(camel: str, snake: str, default):
            if camel in data and data[camel] is not None:
                return data[camel]
            if snake in data and data[snake] is not None:
                return data[snake]
            return default

        def pick_set(camel: str, snake: str, default) -> frozenset:
            values = pick(camel, snake, default)
            if not isinstance(values, (list, tuple, frozenset)) or not all(
                isinstance(v, str) for v in values
            ):
                raise TypeError(f"{camel} must be a list of strings, got {values!r}")
            return frozenset(values)

        return cls(
            include_types=pick_set('includeTypes', 'include_types', DEFAULT_INCLUDE_TYPES),
            exclude_types=pick_set('excludeTypes', 'exclude_types', ()),
            include_billing_frequencies=pick_set(
                'includeBillingFrequencies', 'include_billing_frequencies',
                DEFAULT_INCLUDE_BILLING_FREQUENCIES
            ),
            exclude_billing_frequencies=pick_set(
                'excludeBillingFrequencies', 'exclude_billing_frequencies', ()
            ),
            minimum_fee=float(pick('minimumFee', 'minimum_fee', 0) or 0),
        )

    def to_dict(self) -> dict:
        return {
            "includeTypes": sorted(self.include_types),
            "excludeTypes": sorted(self.exclude_types),
            "includeBillingFrequencies": sorted(self.include_billing_frequencies),
            "excludeBillingFrequencies": sorted(self.exclude_billing_frequencies),
            "minimumFee": self.minimum_fee,
        }


@dataclass(frozen=True)
class ServiceEndpoint:
    """One named aggregate total (single row per endpoint)."""
    service_id: str
    total_variable_name: Optional[str] = None
    billing_frequency: Optional[str] = None
    aggregation_rules: Optional[FilterSpec] = None
    title: str = ""
    display_name: Optional[str] = None
    service_order: int = 999
    active: bool = True

    def effective_filter(self) -> FilterSpec:
        spec = self.aggregation_rules or FilterSpec()
        if self.billing_frequency:
            spec = spec.narrowed_to(self.billing_frequency)
        return spec


@dataclass
class QuoteRequest:
    """A quote request: the answer snapshot and optionally the chosen services."""
    answers: dict[str, Any]
    # None means "do not filter rules by service selection"
    selected_services: Optional[list[str]] = None


@dataclass
class EvaluationPass(Traceable):
    """Result of one forward-only pass over the rule catalog."""
    store: PriceStore = field(default_factory=PriceStore)
    # rule_id → "evaluated" | "failed" | "skipped"
    outcomes: dict[str, str] = field(default_factory=dict)
    trace: list[TraceStep] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class ServiceQuote:
    """Per-service breakdown line of a quote."""
    service_id: str
    title: str
    monthly_fee: float = 0.0
    one_time_fee: float = 0.0
    annual_fee: float = 0.0
    annual_price: float = 0.0
    rule_ids: list[str] = field(default_factory=list)


@dataclass
class Quote(Traceable):
    """Complete result of a quote calculation."""
    totals: dict[str, float] = field(default_factory=dict)
    services: list[ServiceQuote] = field(default_factory=list)
    total_monthly_fees: float = 0.0
    total_one_time_fees: float = 0.0
    total_annual_fees: float = 0.0
    total_annual: float = 0.0
    prices: list[ComputedPrice] = field(default_factory=list)
    trace: list[TraceStep] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    # Metadata
    catalog_hash: Optional[str] = None

    @property
    def has_pricing(self) -> bool:
        """False when every total is zero (caller shows 'pricing unavailable')."""
        figures = list(self.totals.values()) + [
            self.total_monthly_fees, self.total_one_time_fees, self.total_annual_fees
        ]
        return any(v != 0 for v in figures)

    def to_dict(self) -> dict:
        """Plain dict for JSON transport."""
        return {
            "totals": dict(self.totals),
            "totalMonthlyFees": self.total_monthly_fees,
            "totalOneTimeFees": self.total_one_time_fees,
            "totalAnnualFees": self.total_annual_fees,
            "totalAnnual": self.total_annual,
            "services": [
                {
                    "serviceId": s.service_id,
                    "title": s.title,
                    "monthlyFee": s.monthly_fee,
                    "oneTimeFee": s.one_time_fee,
                    "annualFee": s.annual_fee,
                    "annualPrice": s.annual_price,
                    "ruleIds": list(s.rule_ids),
                }
                for s in self.services
            ],
            "prices": [
                {
                    "ruleId": p.rule_id,
                    "value": p.value,
                    "serviceId": p.service_id,
                    "pricingType": p.pricing_type,
                    "billingFrequency": p.billing_frequency,
                }
                for p in self.prices
            ],
            "warnings": list(self.warnings),
            "catalogHash": self.catalog_hash,
        }
