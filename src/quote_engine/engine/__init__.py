"""Engine subpackage - expression evaluation, rule evaluation and aggregation."""
from .quote_engine import QuoteEngine
from .models import PricingRule, ServiceEndpoint, FilterSpec, QuoteRequest, Quote

__all__ = ['QuoteEngine', 'PricingRule', 'ServiceEndpoint', 'FilterSpec', 'QuoteRequest', 'Quote']
