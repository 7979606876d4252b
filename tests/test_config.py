"""Tests for settings validation."""

import pytest
from pydantic import ValidationError

from kindlesync.config import Settings


class TestSettings:
    def test_dev_mode_allows_missing_credentials(self):
        settings = Settings(dev_mode=True, github_client_id="", github_client_secret="")
        assert settings.github_client_id == ""

    def test_credentials_required_outside_dev_mode(self):
        with pytest.raises(ValidationError, match="GITHUB_CLIENT_SECRET"):
            Settings(dev_mode=False, github_client_id="id", github_client_secret="")

    def test_dev_mode_rejected_in_production(self):
        with pytest.raises(ValidationError, match="DEV_MODE"):
            Settings(dev_mode=True, environment="production")

    @pytest.mark.parametrize("field", ["session_expires_in", "user_token_lifetime"])
    def test_lifetimes_must_be_positive(self, field):
        with pytest.raises(ValidationError):
            Settings(dev_mode=True, **{field: 0})

    def test_redirect_uri_defaults_to_backend_callback(self):
        settings = Settings(dev_mode=True, backend_url="https://sync.example.com", github_redirect_uri="")
        assert settings.redirect_uri == "https://sync.example.com/auth/callback"

    def test_explicit_redirect_uri(self):
        settings = Settings(dev_mode=True, github_redirect_uri="https://other.example.com/cb")
        assert settings.redirect_uri == "https://other.example.com/cb"
