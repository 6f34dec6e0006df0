"""
Catalog Service - Loads and validates the pricing rule and service catalogs.

Reads pricing_rules.csv and services.csv with pandas, converts each row into
the engine's frozen dataclasses and checks rules before they are used.
"""
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import pandas as pd

from ..config.settings import Settings, get_settings
from ..engine import expression
from ..engine.errors import CatalogError, ExpressionError
from ..engine.models import (
    CALCULATION_METHODS, DEFAULT_INCLUDE_BILLING_FREQUENCIES, DEFAULT_INCLUDE_TYPES,
    DISCOUNT, FORMULA, PER_UNIT,
    FilterSpec, PricingRule, ServiceEndpoint,
)
from ..engine.rule_matcher import NUMERIC_OPERATORS

logger = logging.getLogger(__name__)

PRICING_TYPES = DEFAULT_INCLUDE_TYPES | {DISCOUNT}

COMPARISON_OPERATORS = {
    'equals', 'notEquals', 'contains', 'notContains', 'includes',
    'isEmpty', 'isNotEmpty',
} | set(NUMERIC_OPERATORS)

RULE_COLUMNS = ['rule_id']
SERVICE_COLUMNS = ['service_id']


def parse_bool(value: str, default: bool = False) -> bool:
    """Parse a boolean from CSV string; blank keeps the default."""
    if not value or value.strip() == '':
        return default
    return value.strip().lower() in ('true', '1', 'yes', 'on', 'checked')


def parse_optional_float(value: str) -> Optional[float]:
    """Parse optional float, tolerating '$' and thousands separators."""
    if not value or value.strip() == '':
        return None
    return float(value.strip().replace('$', '').replace(',', ''))


def parse_optional_str(value: str) -> Optional[str]:
    """Parse optional string (empty = None)."""
    if not value or value.strip() == '':
        return None
    return value.strip()


def parse_currency(value: str) -> float:
    """'$1,250.00' → 1250.0; blank or unparseable → 0."""
    try:
        return parse_optional_float(value) or 0.0
    except ValueError:
        return 0.0


def parse_percentage(value: str) -> float:
    """'50%' → 0.5; bare numbers are taken as fractions already."""
    text = (value or '').strip()
    if not text:
        return 0.0
    try:
        if text.endswith('%'):
            return float(text[:-1]) / 100
        return float(text)
    except ValueError:
        return 0.0


def rule_from_row(row: dict, line_num: int) -> PricingRule:
    """
    Build a PricingRule from one CSV row.

    Raises CatalogError naming the line for missing ids or bad numbers.
    """
    rule_id = parse_optional_str(row.get('rule_id', ''))
    if not rule_id:
        raise CatalogError(f"Line {line_num}: rule_id is required")

    try:
        minimum_value = parse_optional_float(row.get('minimum_value', ''))
        maximum_value = parse_optional_float(row.get('maximum_value', ''))
        unit_price = parse_optional_float(row.get('unit_price', ''))
    except ValueError as e:
        raise CatalogError(f"Line {line_num}: rule '{rule_id}' has a non-numeric bound or unit price") from e

    return PricingRule(
        rule_id=rule_id,
        expression=(row.get('expression') or '').strip(),
        minimum_value=minimum_value,
        maximum_value=maximum_value,
        service_id=parse_optional_str(row.get('service_id', '')),
        name=parse_optional_str(row.get('name', '')) or rule_id,
        pricing_type=parse_optional_str(row.get('pricing_type', '')),
        billing_frequency=parse_optional_str(row.get('billing_frequency', '')),
        active=parse_bool(row.get('active', ''), default=True),
        calculation_method=(parse_optional_str(row.get('calculation_method', '')) or FORMULA).lower(),
        base_price=parse_currency(row.get('base_price', '')),
        unit_price=unit_price,
        unit_name=parse_optional_str(row.get('unit_name', '')),
        quantity_source_field=parse_optional_str(row.get('quantity_source_field', '')),
        trigger_field=parse_optional_str(row.get('trigger_field', '')),
        required_value=parse_optional_str(row.get('required_value', '')),
        comparison_logic=parse_optional_str(row.get('comparison_logic', '')),
        discount_eligible=parse_bool(row.get('discount_eligible', '')),
        discount_percentage=parse_percentage(row.get('discount_percentage', '')),
    )


def service_from_row(row: dict, line_num: int) -> ServiceEndpoint:
    """Build a ServiceEndpoint from one CSV row; aggregation_rules is JSON."""
    service_id = parse_optional_str(row.get('service_id', ''))
    if not service_id:
        raise CatalogError(f"Line {line_num}: service_id is required")

    raw_rules = parse_optional_str(row.get('aggregation_rules', ''))
    aggregation_rules = None
    if raw_rules:
        try:
            aggregation_rules = FilterSpec.from_dict(json.loads(raw_rules))
        except (ValueError, TypeError, AttributeError) as e:
            raise CatalogError(
                f"Line {line_num}: service '{service_id}' has invalid aggregation_rules JSON: {e}"
            ) from e

    try:
        service_order = int(float(row.get('service_order') or 999))
    except ValueError:
        service_order = 999

    return ServiceEndpoint(
        service_id=service_id,
        total_variable_name=parse_optional_str(row.get('total_variable_name', '')),
        billing_frequency=parse_optional_str(row.get('billing_frequency', '')),
        aggregation_rules=aggregation_rules,
        title=parse_optional_str(row.get('title', '')) or service_id,
        display_name=parse_optional_str(row.get('display_name', '')),
        service_order=service_order,
        active=parse_bool(row.get('active', ''), default=True),
    )


@dataclass
class ValidationResult:
    """Result of rule validation."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    placeholders: list[str] = field(default_factory=list)


class CatalogService:
    """Loads the CSV catalogs named in settings."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def _load_csv(self, path: Path, required: list[str]) -> pd.DataFrame:
        if not path.exists():
            raise CatalogError(f"Catalog file not found: {path}")
        try:
            df = pd.read_csv(path, dtype=str).fillna('')
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
            raise CatalogError(f"Could not read {path.name}: {e}") from e

        # Strip all strings and headers
        df.columns = [c.strip() for c in df.columns]
        for col in df.columns:
            df[col] = df[col].astype(str).str.strip()

        missing = [c for c in required if c not in df.columns]
        if missing:
            raise CatalogError(f"{path.name} is missing column(s): {', '.join(missing)}")
        return df

    def load_rules(self) -> list[PricingRule]:
        """Rules in file order; evaluation order is catalog order."""
        df = self._load_csv(self.settings.pricing_rules_csv, RULE_COLUMNS)
        rules = []
        # +2 for 1-indexed header row
        for line_num, row in enumerate(df.to_dict(orient='records'), start=2):
            if not row.get('rule_id'):
                continue
            rules.append(rule_from_row(row, line_num))
        logger.debug("Loaded %d pricing rules from %s", len(rules), self.settings.pricing_rules_csv)
        return rules

    def load_services(self) -> list[ServiceEndpoint]:
        """Services sorted by service_order; inactive rows are kept."""
        df = self._load_csv(self.settings.services_csv, SERVICE_COLUMNS)
        services = [
            service_from_row(row, line_num)
            for line_num, row in enumerate(df.to_dict(orient='records'), start=2)
            if row.get('service_id')
        ]
        services.sort(key=lambda s: s.service_order)
        logger.debug("Loaded %d services from %s", len(services), self.settings.services_csv)
        return services

    def load(self) -> tuple[list[PricingRule], list[ServiceEndpoint]]:
        """Load both catalogs."""
        return self.load_rules(), self.load_services()

    def validate_rule(self, rule: PricingRule, earlier_rule_ids: Optional[set[str]] = None) -> ValidationResult:
        """
        Validate a rule before saving.

        Formulas are parsed with every placeholder set to 0. When
        earlier_rule_ids is given, references to rules outside it are
        reported as forward references.
        """
        return validate_rule(rule, earlier_rule_ids, self.settings.rule_reference_prefix)


def validate_rule(
    rule: PricingRule,
    earlier_rule_ids: Optional[set[str]] = None,
    rule_reference_prefix: str = "pricingRule."
) -> ValidationResult:
    """Check a single rule's method, metadata and formula syntax."""
    result = ValidationResult(valid=True)

    if not rule.rule_id:
        result.errors.append("rule_id is required")

    if rule.calculation_method not in CALCULATION_METHODS:
        result.errors.append(
            f"Invalid calculation_method '{rule.calculation_method}', "
            f"must be one of: {', '.join(CALCULATION_METHODS)}"
        )

    if rule.pricing_type and rule.pricing_type not in PRICING_TYPES:
        result.warnings.append(f"Unknown pricing_type '{rule.pricing_type}' is never aggregated by default")
    if rule.billing_frequency and rule.billing_frequency not in DEFAULT_INCLUDE_BILLING_FREQUENCIES:
        result.warnings.append(f"Unknown billing_frequency '{rule.billing_frequency}'")
    if not rule.service_id:
        result.warnings.append("No service_id; the rule only counts through prefix matching")

    if rule.minimum_value is not None and rule.maximum_value is not None:
        if rule.minimum_value > rule.maximum_value:
            result.warnings.append("minimum_value is greater than maximum_value; maximum wins")

    if rule.comparison_logic and rule.comparison_logic not in COMPARISON_OPERATORS:
        result.errors.append(f"Unknown comparison_logic '{rule.comparison_logic}'")
    if rule.comparison_logic and not rule.trigger_field:
        result.warnings.append("comparison_logic without trigger_field is ignored")

    if rule.calculation_method == FORMULA:
        if not rule.expression:
            result.warnings.append("Empty expression always prices at 0")
        else:
            result.placeholders = expression.extract_placeholders(rule.expression)
            zeroes = {name: 0.0 for name in result.placeholders}
            try:
                expression.parse(expression.substitute(rule.expression, zeroes))
            except ExpressionError as e:
                result.errors.append(f"Invalid expression: {e}")

            if earlier_rule_ids is not None:
                for name in result.placeholders:
                    if name.startswith(rule_reference_prefix):
                        ref_id = name[len(rule_reference_prefix):]
                        if ref_id not in earlier_rule_ids:
                            result.warnings.append(
                                f"{{{{{name}}}}} is not evaluated before this rule and resolves to 0"
                            )
    elif rule.calculation_method == PER_UNIT:
        if not rule.quantity_source_field or not rule.unit_price:
            result.warnings.append("per-unit rule without quantity_source_field/unit_price uses base_price")

    result.valid = not result.errors
    return result
