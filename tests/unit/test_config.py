"""Unit tests for settings parsing."""

import base64

import pytest


class TestDecodeEncryptionKey:
    def test_raw_key(self):
        from idbroker.config import decode_encryption_key

        assert decode_encryption_key("a" * 32) == b"a" * 32

    def test_base64_key(self):
        from idbroker.config import decode_encryption_key

        key = bytes(range(32))
        assert decode_encryption_key(base64.b64encode(key).decode()) == key

    @pytest.mark.parametrize("value", ["", "short", "x" * 20, base64.b64encode(b"k" * 20).decode()])
    def test_invalid_key(self, value):
        from idbroker.config import decode_encryption_key

        with pytest.raises(ValueError):
            decode_encryption_key(value)


class TestSettings:
    def test_defaults(self, settings):
        assert settings.token_cache_ttl_in_minutes == 1440
        assert settings.token_cache_ttl_seconds == 86400
        assert settings.access_token_expiry_seconds == 86400
        assert len(settings.encryption_key_bytes) == 32

    def test_refetch_interval_from_env(self, monkeypatch):
        from idbroker.config import Settings

        monkeypatch.setenv("ENCRYPTION_KEY", "k" * 16)
        monkeypatch.setenv("JWT_SECRET", "secret")
        monkeypatch.setenv("AUTH_PROVIDER_REFETCH_INTERVAL_IN_MINUTES", "5")
        settings = Settings()
        assert settings.auth_provider_refetch_interval_seconds == 300

    def test_missing_jwt_secret(self, monkeypatch):
        from pydantic import ValidationError
        from idbroker.config import Settings

        monkeypatch.delenv("JWT_SECRET", raising=False)
        with pytest.raises(ValidationError):
            Settings(encryption_key="k" * 16, jwt_secret="  ")
