"""
Unit tests for configuration module.

Tests cover Settings validation, environment variable parsing, the
credential check and error handling.
"""

import pytest
from _pytest.monkeypatch import MonkeyPatch

from cloudonboard.config import Settings, get_settings
from cloudonboard.context import ClientContext
from cloudonboard.errors import ConfigurationError


class TestSettingsValidation:
    """Tests for Settings validation."""

    def test_settings_from_env_vars(self, mock_env_vars: dict[str, str]) -> None:
        """Test that Settings loads from environment variables."""
        _ = mock_env_vars

        settings = Settings()  # pyright: ignore[reportCallIssue]

        assert settings.base_url == "https://acme.my.example.com"
        assert settings.client_id == "client|test-client"
        assert settings.aws_region == "us-east-2"
        assert settings.stack_poll_interval_seconds == 5.0
        assert settings.job_poll_interval_seconds == 2.0
        assert settings.saga_timeout_seconds is None
        assert settings.log_level == "DEBUG"

    def test_base_url_trailing_slash_stripped(self, mock_env_vars: dict[str, str], monkeypatch: MonkeyPatch) -> None:
        _ = mock_env_vars
        monkeypatch.setenv("CLOUDONBOARD_BASE_URL", "https://acme.my.example.com/")

        settings = Settings()  # pyright: ignore[reportCallIssue]

        assert settings.base_url == "https://acme.my.example.com"

    def test_empty_base_url_raises(self, mock_env_vars: dict[str, str], monkeypatch: MonkeyPatch) -> None:
        """Test that an empty CLOUDONBOARD_BASE_URL raises error."""
        _ = mock_env_vars
        monkeypatch.setenv("CLOUDONBOARD_BASE_URL", "")

        with pytest.raises(ConfigurationError) as exc_info:
            _ = Settings()  # pyright: ignore[reportCallIssue]

        assert "CLOUDONBOARD_BASE_URL" in str(exc_info.value)

    def test_non_http_base_url_raises(self, mock_env_vars: dict[str, str], monkeypatch: MonkeyPatch) -> None:
        _ = mock_env_vars
        monkeypatch.setenv("CLOUDONBOARD_BASE_URL", "ftp://acme.my.example.com")

        with pytest.raises(ConfigurationError) as exc_info:
            _ = Settings()  # pyright: ignore[reportCallIssue]

        assert exc_info.value.config_key == "CLOUDONBOARD_BASE_URL"

    def test_invalid_region_raises(self, mock_env_vars: dict[str, str], monkeypatch: MonkeyPatch) -> None:
        _ = mock_env_vars
        monkeypatch.setenv("CLOUDONBOARD_AWS_REGION", "moon-base-1")

        with pytest.raises(ConfigurationError) as exc_info:
            _ = Settings()  # pyright: ignore[reportCallIssue]

        assert exc_info.value.config_key == "CLOUDONBOARD_AWS_REGION"

    def test_region_normalized(self, mock_env_vars: dict[str, str], monkeypatch: MonkeyPatch) -> None:
        _ = mock_env_vars
        monkeypatch.setenv("CLOUDONBOARD_AWS_REGION", " EU-West-1 ")

        assert Settings().aws_region == "eu-west-1"  # pyright: ignore[reportCallIssue]

    def test_invalid_log_level_raises(self, mock_env_vars: dict[str, str], monkeypatch: MonkeyPatch) -> None:
        """Test that invalid CLOUDONBOARD_LOG_LEVEL raises error."""
        _ = mock_env_vars
        monkeypatch.setenv("CLOUDONBOARD_LOG_LEVEL", "VERBOSE")

        with pytest.raises(ConfigurationError) as exc_info:
            _ = Settings()  # pyright: ignore[reportCallIssue]

        assert "CLOUDONBOARD_LOG_LEVEL" in str(exc_info.value)

    def test_log_level_uppercased(self, mock_env_vars: dict[str, str], monkeypatch: MonkeyPatch) -> None:
        _ = mock_env_vars
        monkeypatch.setenv("CLOUDONBOARD_LOG_LEVEL", "warning")

        assert Settings().log_level == "WARNING"  # pyright: ignore[reportCallIssue]


class TestCredentials:
    """Tests for the control plane credential check."""

    def test_client_credentials_accepted(self, mock_settings: Settings) -> None:
        mock_settings.validate_credentials()

    def test_access_token_alone_accepted(self, mock_env_vars: dict[str, str], monkeypatch: MonkeyPatch) -> None:
        _ = mock_env_vars
        monkeypatch.delenv("CLOUDONBOARD_CLIENT_ID")
        monkeypatch.delenv("CLOUDONBOARD_CLIENT_SECRET")
        monkeypatch.setenv("CLOUDONBOARD_ACCESS_TOKEN", "static-token")

        Settings().validate_credentials()  # pyright: ignore[reportCallIssue]

    def test_missing_secret_raises(self, mock_env_vars: dict[str, str], monkeypatch: MonkeyPatch) -> None:
        _ = mock_env_vars
        monkeypatch.delenv("CLOUDONBOARD_CLIENT_SECRET")

        with pytest.raises(ConfigurationError) as exc_info:
            Settings().validate_credentials()  # pyright: ignore[reportCallIssue]

        assert exc_info.value.config_key == "CLOUDONBOARD_CLIENT_SECRET"


class TestGetSettings:
    """Tests for the cached settings loader."""

    def test_get_settings_cached(self, mock_env_vars: dict[str, str]) -> None:
        _ = mock_env_vars

        assert get_settings() is get_settings()

    def test_get_settings_wraps_validation_errors(
        self,
        mock_env_vars: dict[str, str],
        monkeypatch: MonkeyPatch,
    ) -> None:
        """Test pydantic validation errors surface as ConfigurationError."""
        _ = mock_env_vars
        monkeypatch.setenv("CLOUDONBOARD_POLL_JITTER", "2.5")

        with pytest.raises(ConfigurationError, match="Failed to load configuration"):
            _ = get_settings()

    def test_get_settings_checks_credentials(self, mock_env_vars: dict[str, str], monkeypatch: MonkeyPatch) -> None:
        _ = mock_env_vars
        monkeypatch.delenv("CLOUDONBOARD_CLIENT_ID")

        with pytest.raises(ConfigurationError) as exc_info:
            _ = get_settings()

        assert exc_info.value.config_key == "CLOUDONBOARD_CLIENT_ID"


class TestClientContextFromSettings:
    """Tests for building the process context from settings."""

    def test_polling_configuration(self, mock_settings: Settings) -> None:
        context = ClientContext.from_settings(mock_settings, control_plane=object())  # pyright: ignore[reportArgumentType]

        assert context.stack_poll_interval == 5.0
        assert context.job_poll_interval == 2.0
        assert context.saga_timeout is None
        assert context.aws_region == "us-east-2"
        assert context.new_saga().cancellation.deadline is None
