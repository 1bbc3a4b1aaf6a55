"""
Unit tests for operator settings and the error taxonomy.
"""

import pytest
import pydantic

from self_service.config import Settings, get_settings
from self_service.errors import (
    PERMANENT_ERRORS,
    AlreadyExistsError,
    ApplyError,
    ConflictError,
    RenderError,
    TransportError,
    UnknownKindError,
    ValidationError,
    WaitTimeoutError,
    WebhookBundleError,
)


class TestSettings:
    """Test Settings defaults and environment overrides."""

    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.crd_reinstall == "if-changed"
        assert settings.webhook_config_enabled is True
        assert settings.webhook_failure_policy == "Ignore"
        assert settings.conflict_retry_attempts == 3

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("CRD_REINSTALL", " Always ")
        monkeypatch.setenv("WEBHOOK_CONFIG_ENABLED", "false")
        monkeypatch.setenv("WEBHOOK_FAILURE_POLICY", "fail")
        monkeypatch.setenv("WAIT_TIMEOUT_SECONDS", "5")

        settings = Settings(_env_file=None)

        assert settings.crd_reinstall == "always"
        assert settings.webhook_config_enabled is False
        assert settings.webhook_failure_policy == "Fail"
        assert settings.wait_timeout_seconds == 5.0

    def test_invalid_reinstall_policy(self):
        with pytest.raises(pydantic.ValidationError):
            Settings(_env_file=None, crd_reinstall="sometimes")

    def test_invalid_webhook_failure_policy(self):
        with pytest.raises(pydantic.ValidationError):
            Settings(_env_file=None, webhook_failure_policy="retry")

    def test_get_settings_is_cached(self):
        get_settings.cache_clear()

        assert get_settings() is get_settings()


class TestErrors:
    """Test the error taxonomy."""

    def test_permanent_errors(self):
        assert RenderError in PERMANENT_ERRORS
        assert ValidationError in PERMANENT_ERRORS
        assert UnknownKindError in PERMANENT_ERRORS
        assert not issubclass(ApplyError, PERMANENT_ERRORS)
        assert not issubclass(TransportError, PERMANENT_ERRORS)

    def test_already_exists_is_a_conflict(self):
        assert issubclass(AlreadyExistsError, ConflictError)
        assert AlreadyExistsError("x").status == 409

    def test_wait_timeout_is_a_timeout(self):
        error = WaitTimeoutError("Namespace", "team-a", "Created", 30)

        assert isinstance(error, TimeoutError)
        assert str(error) == "Namespace with name team-a did not reach state Created within 30 seconds"

    def test_transport_error_without_status_is_retryable(self):
        assert TransportError("connection reset").retryable

    def test_webhook_bundle_error_message(self):
        error = WebhookBundleError("Secret tls", ["Service webhook"], RuntimeError("boom"))

        assert error.failed == "Secret tls"
        assert error.written == ["Service webhook"]
        assert "already written: Service webhook" in str(error)
