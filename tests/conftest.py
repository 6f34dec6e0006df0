import os
import sys

import pytest

# Add src to path for internal imports
src_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src')
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from quote_engine.config.settings import Settings
from quote_engine.engine.models import (
    ADD_ON, ANNUAL, BASE_SERVICE, DISCOUNT, MONTHLY, ONE_TIME_FEE,
    ComputedPrice, FilterSpec, PriceStore, PricingRule, ServiceEndpoint,
)
from quote_engine.services.catalog_service import CatalogService


@pytest.fixture
def settings(monkeypatch):
    """Settings against the packaged catalogs, ignoring the caller's environment."""
    for name in ("QUOTE_ENGINE_DATA_DIR", "QUOTE_ENGINE_RECURRING_RATE_FALLBACK",
                 "QUOTE_ENGINE_DISCOUNT_SERVICE", "QUOTE_ENGINE_HOST", "QUOTE_ENGINE_PORT"):
        monkeypatch.delenv(name, raising=False)
    return Settings.load()


@pytest.fixture
def catalog(settings):
    return CatalogService(settings).load()


@pytest.fixture
def sample_store():
    """A: 50 Monthly Base, B: 20 Monthly Add-on, C: 10 Annual Base, D: -15 Monthly Discount."""
    return PriceStore([
        ComputedPrice("A", 50.0, "S", BASE_SERVICE, MONTHLY),
        ComputedPrice("B", 20.0, "S", ADD_ON, MONTHLY),
        ComputedPrice("C", 10.0, "S", BASE_SERVICE, ANNUAL),
        ComputedPrice("D", -15.0, "S", DISCOUNT, MONTHLY),
        ComputedPrice("E", 99.0, "other", BASE_SERVICE, ONE_TIME_FEE),
    ])


def formula(rule_id, expression, **kwargs):
    """Shorthand for a formula rule with optional catalog metadata."""
    return PricingRule(rule_id=rule_id, expression=expression, **kwargs)


def endpoint(service_id, total_variable_name, billing_frequency=None, **filters):
    spec = FilterSpec.from_dict(filters) if filters else None
    return ServiceEndpoint(
        service_id=service_id,
        total_variable_name=total_variable_name,
        billing_frequency=billing_frequency,
        aggregation_rules=spec,
        title=service_id.title(),
    )
