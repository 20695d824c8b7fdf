"""Tests for Settings — env loading and startup validation."""

import pytest

from clinic_booking.config import Settings


def _settings(**fields):
    return Settings(_env_file=None, **fields)


class TestDefaults:
    def test_memory_defaults(self):
        settings = _settings()
        assert settings.backend == "memory"
        assert settings.session_store == "memory"
        assert settings.collaborator_timeout_seconds == 5.0
        assert settings.session_ttl_seconds == 3600

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("CLINIC_TRANSFER_NUMBER", "+15550009999")
        monkeypatch.setenv("GATHER_TIMEOUT", "6")
        settings = _settings()
        assert settings.clinic_transfer_number == "+15550009999"
        assert settings.gather_timeout == 6

    def test_webhook_url(self):
        assert _settings(public_base_url="https://x.ngrok.app/").webhook_url == (
            "https://x.ngrok.app/twilio/voice"
        )

    def test_relative_webhook_url_without_base(self):
        assert _settings().webhook_url == "/twilio/voice"


class TestValidateStartup:
    def test_memory_backend_warns(self):
        warnings = _settings(admin_api_key="k", public_base_url="https://x").validate_startup()
        assert any("BACKEND=memory" in w for w in warnings)

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="BACKEND"):
            _settings(backend="mysql").validate_startup()

    def test_unknown_session_store(self):
        with pytest.raises(ValueError, match="SESSION_STORE"):
            _settings(session_store="memcached").validate_startup()

    def test_supabase_needs_credentials(self):
        with pytest.raises(ValueError, match="SUPABASE_URL"):
            _settings(backend="supabase").validate_startup()

    def test_supabase_placeholder_key(self):
        with pytest.raises(ValueError, match="SUPABASE_SERVICE_ROLE_KEY"):
            _settings(
                backend="supabase",
                supabase_url="https://real.supabase.co",
                supabase_service_role_key="your-service-role-key",
            ).validate_startup()

    def test_supabase_configured(self):
        warnings = _settings(
            backend="supabase",
            supabase_url="https://real.supabase.co",
            supabase_service_role_key="k",
            admin_api_key="k",
            public_base_url="https://x",
        ).validate_startup()
        assert warnings == []

    def test_signature_validation_needs_token(self):
        with pytest.raises(ValueError, match="TWILIO_AUTH_TOKEN"):
            _settings(validate_twilio_signature=True).validate_startup()

    def test_missing_admin_key_warns(self):
        warnings = _settings().validate_startup()
        assert any("ADMIN_API_KEY" in w for w in warnings)
        assert any("PUBLIC_BASE_URL" in w for w in warnings)
