"""
Centralized settings and path configuration for the quote engine.
"""
import os
from pathlib import Path
from dataclasses import dataclass
from typing import Optional


def get_package_root() -> Path:
    """Get the quote_engine package directory (where data/ lives)."""
    return Path(__file__).resolve().parent.parent


@dataclass
class Settings:
    """Application settings with sensible defaults."""

    # Catalog locations
    data_dir: Path
    pricing_rules_csv: Path
    services_csv: Path

    # Variable resolution
    rule_reference_prefix: str = "pricingRule."
    recurring_rate_variable: str = "monthlyBookkeepingRate"
    recurring_rate_tag: str = "bookkeeping"
    recurring_rate_fallback: float = 105.0

    # Selecting this service discounts eligible non-formula rules
    discount_service_id: str = "advisory"

    # API server
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    @classmethod
    def load(cls, data_dir: Optional[Path] = None) -> 'Settings':
        """Load settings, honouring QUOTE_ENGINE_* environment overrides."""
        env_dir = os.environ.get("QUOTE_ENGINE_DATA_DIR")
        root = Path(data_dir or env_dir or get_package_root() / 'data')

        settings = cls(
            data_dir=root,
            pricing_rules_csv=root / 'pricing_rules.csv',
            services_csv=root / 'services.csv',
        )

        fallback = os.environ.get("QUOTE_ENGINE_RECURRING_RATE_FALLBACK")
        if fallback:
            settings.recurring_rate_fallback = float(fallback)

        discount_service = os.environ.get("QUOTE_ENGINE_DISCOUNT_SERVICE")
        if discount_service:
            settings.discount_service_id = discount_service.strip()

        host = os.environ.get("QUOTE_ENGINE_HOST")
        if host:
            settings.api_host = host.strip()

        port = os.environ.get("QUOTE_ENGINE_PORT")
        if port:
            settings.api_port = int(port)

        return settings


# Default settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def reset_settings():
    """Drop the cached settings so the next get_settings() reloads them."""
    global _settings
    _settings = None
