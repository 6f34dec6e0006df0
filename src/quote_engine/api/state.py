"""
Shared engine instance for the API routers.
"""
from ..engine import QuoteEngine

engine = QuoteEngine.from_settings()
