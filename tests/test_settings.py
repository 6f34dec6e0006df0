from pathlib import Path

from quote_engine.config import settings as settings_module
from quote_engine.config.settings import Settings, get_package_root, get_settings, reset_settings


def test_defaults(settings):
    assert settings.data_dir == get_package_root() / 'data'
    assert settings.pricing_rules_csv.name == 'pricing_rules.csv'
    assert settings.recurring_rate_fallback == 105
    assert settings.rule_reference_prefix == 'pricingRule.'
    assert settings.discount_service_id == 'advisory'
    assert (settings.api_host, settings.api_port) == ('0.0.0.0', 8000)


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("QUOTE_ENGINE_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("QUOTE_ENGINE_RECURRING_RATE_FALLBACK", "99.5")
    monkeypatch.setenv("QUOTE_ENGINE_DISCOUNT_SERVICE", " premium ")
    monkeypatch.setenv("QUOTE_ENGINE_HOST", "127.0.0.1")
    monkeypatch.setenv("QUOTE_ENGINE_PORT", "9001")
    loaded = Settings.load()
    assert loaded.data_dir == tmp_path
    assert loaded.services_csv == tmp_path / 'services.csv'
    assert loaded.recurring_rate_fallback == 99.5
    assert loaded.discount_service_id == 'premium'
    assert loaded.api_host == '127.0.0.1'
    assert loaded.api_port == 9001


def test_explicit_data_dir_wins(monkeypatch, tmp_path):
    monkeypatch.setenv("QUOTE_ENGINE_DATA_DIR", "/somewhere/else")
    assert Settings.load(tmp_path).data_dir == Path(tmp_path)


def test_get_settings_is_cached(monkeypatch):
    monkeypatch.setattr(settings_module, "_settings", None)
    first = get_settings()
    assert get_settings() is first
    reset_settings()
    assert get_settings() is not first
    reset_settings()
