"""
Configuration management for CloudOnboard.

This module provides centralized configuration management using Pydantic
settings with validation. All configuration is loaded from environment
variables (prefixed ``CLOUDONBOARD_``) or a ``.env`` file, with explicit
validation and clear error messages for missing or invalid values.

Environment Variables:
    CLOUDONBOARD_BASE_URL: Control plane base URL (required)
    CLOUDONBOARD_CLIENT_ID: Service account client id
    CLOUDONBOARD_CLIENT_SECRET: Service account client secret
    CLOUDONBOARD_ACCESS_TOKEN: Static bearer token (alternative to client id/secret)
    CLOUDONBOARD_AWS_PROFILE: AWS profile used when none is given on the command line
    CLOUDONBOARD_AWS_REGION: AWS region for the CloudFormation client (default: us-east-1)
    CLOUDONBOARD_STACK_POLL_INTERVAL_SECONDS: Stack poll interval (default: 10)
    CLOUDONBOARD_JOB_POLL_INTERVAL_SECONDS: Task chain poll interval (default: 10)
    CLOUDONBOARD_POLL_JITTER: Random extra delay as a fraction of the interval (default: 0.0)
    CLOUDONBOARD_SAGA_TIMEOUT_SECONDS: Deadline for one saga (optional)
    CLOUDONBOARD_REQUEST_TIMEOUT_SECONDS: HTTP timeout for control plane calls (default: 30)
    CLOUDONBOARD_LOG_LEVEL: Logging level (default: INFO)

Usage:
    from cloudonboard.config import get_settings

    settings = get_settings()
    print(settings.base_url)
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from cloudonboard.errors import ConfigurationError
from cloudonboard.regions import is_valid_region


class Settings(BaseSettings):
    """
    CloudOnboard configuration settings.

    Attributes:
        base_url: Control plane base URL, e.g. https://acme.my.example.com
        client_id: Service account client id
        client_secret: Service account client secret
        access_token: Static bearer token
        aws_profile: Default AWS profile
        aws_region: AWS region for the CloudFormation client
        stack_poll_interval_seconds: Seconds between stack status polls
        job_poll_interval_seconds: Seconds between task chain polls
        poll_jitter: Extra random delay as a fraction of the poll interval
        saga_timeout_seconds: Deadline for one saga, None for no deadline
        request_timeout_seconds: HTTP timeout for control plane calls
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    model_config = SettingsConfigDict(
        env_prefix="CLOUDONBOARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Control plane
    base_url: str = Field(
        ...,
        description="Control plane base URL",
    )
    client_id: str | None = Field(
        default=None,
        description="Service account client id",
    )
    client_secret: str | None = Field(
        default=None,
        description="Service account client secret",
    )
    access_token: str | None = Field(
        default=None,
        description="Static bearer token, used instead of the service account",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="HTTP timeout for control plane calls",
    )

    # AWS
    aws_profile: str | None = Field(
        default=None,
        description="Default AWS profile",
    )
    aws_region: str = Field(
        default="us-east-1",
        description="AWS region for the CloudFormation client",
    )

    # Saga
    stack_poll_interval_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Seconds between CloudFormation stack polls",
    )
    job_poll_interval_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Seconds between task chain polls",
    )
    poll_jitter: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Extra random delay as a fraction of the poll interval",
    )
    saga_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Deadline for a single saga",
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """
        Validate the control plane URL.

        Args:
            v: URL from environment

        Returns:
            URL without trailing slash

        Raises:
            ConfigurationError: If the URL is empty or not http(s)
        """
        if not v or not v.strip():
            raise ConfigurationError(
                "CLOUDONBOARD_BASE_URL is required but not set",
                config_key="CLOUDONBOARD_BASE_URL",
                reason="URL is empty or missing",
            )
        v = v.strip()
        if not v.startswith(("https://", "http://")):
            raise ConfigurationError(
                f"CLOUDONBOARD_BASE_URL '{v}' is not an http(s) URL",
                config_key="CLOUDONBOARD_BASE_URL",
                reason="URL scheme must be http or https",
            )
        return v.rstrip("/")

    @field_validator("aws_region")
    @classmethod
    def validate_aws_region(cls, v: str) -> str:
        """
        Validate the AWS region against the region table.

        Raises:
            ConfigurationError: If the region is unknown
        """
        v = v.strip().lower()
        if not is_valid_region(v):
            raise ConfigurationError(
                f"CLOUDONBOARD_AWS_REGION '{v}' is not a known AWS region",
                config_key="CLOUDONBOARD_AWS_REGION",
                reason="Unknown region",
            )
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """
        Validate log level is recognized.

        Raises:
            ConfigurationError: If log level is invalid
        """
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ConfigurationError(
                f"CLOUDONBOARD_LOG_LEVEL '{v}' is not valid. Must be one of: {', '.join(sorted(valid_levels))}",
                config_key="CLOUDONBOARD_LOG_LEVEL",
                reason=f"Invalid log level: {v}",
            )
        return v_upper

    def validate_credentials(self) -> None:
        """
        Validate that the control plane can be authenticated against.

        Either a static access token or both the client id and the client
        secret must be set.

        Raises:
            ConfigurationError: If no usable credentials are configured
        """
        if self.access_token:
            return
        if not self.client_id:
            raise ConfigurationError(
                "CLOUDONBOARD_CLIENT_ID is required when no access token is set",
                config_key="CLOUDONBOARD_CLIENT_ID",
                reason="Control plane credentials are missing",
            )
        if not self.client_secret:
            raise ConfigurationError(
                "CLOUDONBOARD_CLIENT_SECRET is required when no access token is set",
                config_key="CLOUDONBOARD_CLIENT_SECRET",
                reason="Control plane credentials are missing",
            )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Validated Settings instance

    Raises:
        ConfigurationError: If configuration is invalid

    Example:
        >>> from cloudonboard.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.stack_poll_interval_seconds)
        10.0
    """
    try:
        settings = Settings()  # pyright: ignore[reportCallIssue]
        settings.validate_credentials()
        return settings
    except Exception as e:
        if isinstance(e, ConfigurationError):
            raise
        raise ConfigurationError(
            f"Failed to load configuration: {e}",
            reason=str(e),
        ) from e
