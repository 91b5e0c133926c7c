"""
Tests for environment configuration and stub wiring
"""

import pytest
from pydantic import SecretStr, ValidationError

from core.config import Settings, get_settings

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Clear the settings cache before each test"""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestEnvironmentConfiguration:
    """Test environment variable configuration and validation"""

    def test_default_settings(self, monkeypatch):
        """Test default settings initialization"""
        for name in ("ENVIRONMENT", "USE_STUBS", "NOTIFICATION_BACKEND", "DATABASE_URL"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings(_env_file=None)
        assert settings.environment == "development"
        assert settings.use_stubs is True
        assert settings.offer_expiry_days == 7
        assert settings.checkout_session_expiry_minutes == 30
        assert settings.webhook_failure_mode == "acknowledge"
        assert settings.notification_backend == "memory"
        assert settings.enable_demo_offers is False

    def test_database_url_used_as_given(self):
        url = "postgresql://offers:secret@db:5432/offers"
        assert Settings(database_url=url, _env_file=None).database_url == url

    def test_environment_from_env_vars(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "staging")
        monkeypatch.setenv("OFFER_EXPIRY_DAYS", "14")
        monkeypatch.setenv("WEBHOOK_FAILURE_MODE", "retry")

        settings = Settings(_env_file=None)
        assert settings.environment == "staging"
        assert settings.offer_expiry_days == 14
        assert settings.webhook_failure_mode == "retry"

    def test_invalid_environment(self):
        with pytest.raises(ValidationError) as exc_info:
            Settings(environment="qa", _env_file=None)
        assert "Environment must be one of" in str(exc_info.value)

    def test_production_rejects_stubs(self):
        """Production environment rejects USE_STUBS=true"""
        with pytest.raises(ValidationError) as exc_info:
            Settings(environment="production", use_stubs=True, _env_file=None)

        assert "Production environment cannot run with USE_STUBS=true" in str(exc_info.value)

    def test_stripe_keys_required_without_stubs(self):
        with pytest.raises(ValidationError) as exc_info:
            Settings(use_stubs=False, stripe_webhook_secret=SecretStr("whsec_x"), _env_file=None)
        assert "Stripe secret key required" in str(exc_info.value)

        with pytest.raises(ValidationError) as exc_info:
            Settings(use_stubs=False, stripe_secret_key=SecretStr("sk_test_x"), _env_file=None)
        assert "Stripe webhook secret required" in str(exc_info.value)

    def test_invalid_webhook_failure_mode(self):
        with pytest.raises(ValidationError) as exc_info:
            Settings(webhook_failure_mode="drop", _env_file=None)
        assert "webhook_failure_mode must be one of" in str(exc_info.value)

    def test_invalid_notification_backend(self):
        with pytest.raises(ValidationError):
            Settings(notification_backend="kafka", _env_file=None)

    @pytest.mark.parametrize("minutes", [29, 1441])
    def test_checkout_expiry_bounds(self, minutes):
        """The processor only accepts session lifetimes between 30 minutes and 24 hours"""
        with pytest.raises(ValidationError):
            Settings(checkout_session_expiry_minutes=minutes, _env_file=None)


class TestWebhookSecret:
    def test_stub_mode_uses_fixed_secret(self):
        settings = Settings(use_stubs=True, _env_file=None)
        assert settings.webhook_secret == "whsec_stub_secret"

    def test_configured_secret_wins(self):
        settings = Settings(use_stubs=True, stripe_webhook_secret=SecretStr("whsec_real"), _env_file=None)
        assert settings.webhook_secret == "whsec_real"


class TestSecretMasking:
    def test_secret_str_fields(self):
        """Sensitive fields use SecretStr"""
        settings = Settings(
            stripe_secret_key=SecretStr("sk_test_secret"),
            stripe_webhook_secret=SecretStr("whsec_secret"),
            _env_file=None,
        )

        assert isinstance(settings.stripe_secret_key, SecretStr)
        assert "sk_test_secret" not in str(settings.stripe_secret_key)
        assert settings.stripe_secret_key.get_secret_value() == "sk_test_secret"

    def test_model_dump_masks_sensitive_fields(self):
        settings = Settings(
            stripe_secret_key=SecretStr("sk_test_secret"),
            stripe_webhook_secret=SecretStr("whs"),
            _env_file=None,
        )

        data = settings.model_dump()
        assert data["stripe_secret_key"] == "sk_t" + "*" * len("est_secret")
        assert data["stripe_webhook_secret"] == "***"


class TestSettingsCache:
    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_properties(self):
        assert Settings(environment="development", _env_file=None).is_development is True
        settings = Settings(
            environment="production",
            use_stubs=False,
            stripe_secret_key=SecretStr("sk_live_x"),
            stripe_webhook_secret=SecretStr("whsec_x"),
            _env_file=None,
        )
        assert settings.is_production is True
