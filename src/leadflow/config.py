"""Lead pipeline configuration module.

This module provides centralized configuration management for the lead
pipeline, loading settings from environment variables with validation.

Configuration is loaded from:
1. .env file (if present)
2. Environment variables

All API keys and sensitive configuration should be provided via environment
variables, never hardcoded.

Usage:
    >>> from leadflow.config import config
    >>> print(config.DISCOVERY_MAX_POLL_ATTEMPTS)
    60
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class ConfigError(Exception):
    """Raised when configuration validation fails."""

    pass


class Config:
    """Application configuration class that loads settings from environment variables.

    Loads and validates the configuration for every collaborator of the
    pipeline: the relational store, OpenAI, the Exa discovery provider, the
    Instantly outbound platform and SendGrid for the daily digest.

    Attributes:
        DATABASE_URL: PostgreSQL (asyncpg) or SQLite (aiosqlite) connection string.
        OPENAI_API_KEY: OpenAI API key for query, persona, routing and copy generation.
        EXA_API_KEY: Exa Websets API key for lead discovery.
        INSTANTLY_API_KEY: Instantly v2 API key for campaigns and lead attachment.
        SENDGRID_API_KEY: SendGrid API key for digest delivery.
        DIGEST_RECIPIENTS: Addresses that receive the daily digest.

    Example:
        >>> config = Config()
        >>> print(config.APP_ENV)
        dev
    """

    def __init__(self) -> None:
        """Initialize configuration by loading from environment variables."""
        self.logger = logging.getLogger(__name__)

        # Application environment
        self.APP_ENV = self._get_optional("APP_ENV", "dev")
        self.DEBUG = self._get_bool("DEBUG")
        self.LOG_LEVEL = self._get_optional("LOG_LEVEL", "INFO")
        self.APP_URL = self._get_optional("APP_URL", "http://localhost:3200")

        # Database Configuration
        self.DATABASE_URL = self._get_optional("DATABASE_URL")
        self.DATABASE_POOL_SIZE = self._get_int("DATABASE_POOL_SIZE", 5)
        self.DATABASE_MAX_OVERFLOW = self._get_int("DATABASE_MAX_OVERFLOW", 10)

        # OpenAI Configuration
        self.OPENAI_API_KEY = self._get_optional("OPENAI_API_KEY")
        self.OPENAI_MODEL = self._get_optional("OPENAI_MODEL", "gpt-4o")
        self.OPENAI_RESEARCH_MODEL = self._get_optional(
            "OPENAI_RESEARCH_MODEL", "gpt-4.1-mini"
        )
        self.OPENAI_ROUTING_MODEL = self._get_optional(
            "OPENAI_ROUTING_MODEL", "gpt-4o-mini"
        )
        self.OPENAI_COPY_MODEL = self._get_optional("OPENAI_COPY_MODEL", "gpt-4.1")
        self.OPENAI_EXTRACTION_MODEL = self._get_optional(
            "OPENAI_EXTRACTION_MODEL", "gpt-4o-mini"
        )
        self.OPENAI_TIMEOUT_SECONDS = self._get_int("OPENAI_TIMEOUT_SECONDS", 120)

        # Exa Websets Configuration
        self.EXA_API_KEY = self._get_optional("EXA_API_KEY")
        self.EXA_BASE_URL = self._get_optional(
            "EXA_BASE_URL", "https://api.exa.ai/websets/v0"
        )

        # Instantly Configuration
        self.INSTANTLY_API_KEY = self._get_optional("INSTANTLY_API_KEY")
        self.INSTANTLY_BASE_URL = self._get_optional(
            "INSTANTLY_BASE_URL", "https://api.instantly.ai/api/v2"
        )
        self.INSTANTLY_SENDER_EMAIL = self._get_optional("INSTANTLY_SENDER_EMAIL")

        # SendGrid / Digest Configuration
        self.SENDGRID_API_KEY = self._get_optional("SENDGRID_API_KEY")
        self.SENDGRID_FROM_EMAIL = self._get_optional("SENDGRID_FROM_EMAIL")
        self.SENDGRID_FROM_NAME = self._get_optional("SENDGRID_FROM_NAME", "leadflow")
        self.DIGEST_RECIPIENTS = self._get_list("DIGEST_RECIPIENTS")

        # Discovery
        self.DISCOVERY_RESULT_COUNT = self._get_int("DISCOVERY_RESULT_COUNT", 25)
        self.DISCOVERY_POLL_INTERVAL_SECONDS = self._get_float(
            "DISCOVERY_POLL_INTERVAL_SECONDS", 5.0
        )
        self.DISCOVERY_MAX_POLL_ATTEMPTS = self._get_int(
            "DISCOVERY_MAX_POLL_ATTEMPTS", 60
        )

        # Job execution
        self.ENRICHMENT_CONCURRENCY = self._get_int("ENRICHMENT_CONCURRENCY", 3)
        self.ATTACHMENT_CONCURRENCY = self._get_int("ATTACHMENT_CONCURRENCY", 5)
        self.JOB_MAX_RETRIES = self._get_int("JOB_MAX_RETRIES", 2)
        self.RETRY_DELAY_SECONDS = self._get_float("RETRY_DELAY_SECONDS", 2.0)

        # Campaign defaults
        self.AUTOPILOT_DEFAULT_MIN_FIT_SCORE = self._get_int(
            "AUTOPILOT_DEFAULT_MIN_FIT_SCORE", 7
        )
        self.CAMPAIGN_DEFAULT_MAX_LEADS = self._get_int(
            "CAMPAIGN_DEFAULT_MAX_LEADS", 500
        )
        self.CAMPAIGN_DAILY_LIMIT = self._get_int("CAMPAIGN_DAILY_LIMIT", 50)
        self.CAMPAIGN_NAME_PREFIX = self._get_optional(
            "CAMPAIGN_NAME_PREFIX", "leadflow"
        )
        self.SEND_WINDOW_TIMEZONE = self._get_optional(
            "SEND_WINDOW_TIMEZONE", "America/Chicago"
        )

        # Scheduler
        self.SCHEDULER_TIMEZONE = self._get_optional("SCHEDULER_TIMEZONE", "UTC")

    def _get_required(self, name: str, default: Optional[str] = None) -> str:
        """Get a required configuration value from environment variables.

        Args:
            name: The name of the environment variable.
            default: Optional default value if not found.

        Returns:
            The value of the environment variable or default if provided.

        Raises:
            ConfigError: If the environment variable is not found and no default provided.
        """
        if name in os.environ:
            return os.environ[name]
        if default is not None:
            self.logger.warning(
                "Environment variable %s not found, using default value", name
            )
            return default
        raise ConfigError(
            f"Required environment variable {name} not found and no default provided"
        )

    def _get_optional(self, name: str, default: str = "") -> str:
        """Get an optional configuration value from environment variables.

        Args:
            name: The name of the environment variable.
            default: Default value if not found (default: "").

        Returns:
            The value of the environment variable or the default value.
        """
        if name in os.environ:
            return os.environ[name]
        return default

    def _get_bool(self, name: str) -> bool:
        """Get a boolean configuration value from environment variables.

        Args:
            name: The name of the environment variable.

        Returns:
            True if the environment variable exists and is set to 'true' or '1'.
        """
        return name in os.environ and os.environ[name].lower() in ["true", "1"]

    def _get_int(self, name: str, default: int) -> int:
        """Get an integer configuration value.

        Raises:
            ConfigError: If the variable is set but is not an integer.
        """
        raw = self._get_optional(name, str(default))
        try:
            return int(raw)
        except ValueError:
            raise ConfigError(f"{name} must be an integer, got {raw!r}")

    def _get_float(self, name: str, default: float) -> float:
        """Get a float configuration value.

        Raises:
            ConfigError: If the variable is set but is not a number.
        """
        raw = self._get_optional(name, str(default))
        try:
            return float(raw)
        except ValueError:
            raise ConfigError(f"{name} must be a number, got {raw!r}")

    def _get_list(self, name: str) -> list[str]:
        """Get a comma-separated list, dropping blank entries."""
        raw = self._get_optional(name)
        return [item.strip() for item in raw.split(",") if item.strip()]

    def validate_for_database(self) -> None:
        """Validate configuration required for database operations.

        Raises:
            ConfigError: If required database configuration is missing.
        """
        if not self.DATABASE_URL:
            raise ConfigError("DATABASE_URL is required for database operations")

    def validate_for_ai(self) -> None:
        """Validate configuration required for AI calls.

        Raises:
            ConfigError: If the OpenAI key is missing.
        """
        if not self.OPENAI_API_KEY:
            raise ConfigError("OPENAI_API_KEY is required for AI generation")

    def validate_for_discovery(self) -> None:
        """Validate configuration required for lead discovery.

        Raises:
            ConfigError: If the Exa key is missing.
        """
        if not self.EXA_API_KEY:
            raise ConfigError("EXA_API_KEY is required for lead discovery")

    def validate_for_outbound(self) -> None:
        """Validate configuration required for the outbound platform.

        Raises:
            ConfigError: If the Instantly key is missing.
        """
        if not self.INSTANTLY_API_KEY:
            raise ConfigError("INSTANTLY_API_KEY is required for campaign operations")

    def validate_for_digest(self) -> None:
        """Validate configuration required for the daily digest.

        Raises:
            ConfigError: If SendGrid credentials or recipients are missing.
        """
        if not self.SENDGRID_API_KEY:
            raise ConfigError("SENDGRID_API_KEY is required for digest delivery")
        if not self.SENDGRID_FROM_EMAIL:
            raise ConfigError("SENDGRID_FROM_EMAIL is required for digest delivery")
        if not self.DIGEST_RECIPIENTS:
            raise ConfigError("DIGEST_RECIPIENTS is required for digest delivery")

    def validate_all(self) -> None:
        """Validate all required configuration for the full pipeline.

        Raises:
            ConfigError: If any required configuration is missing.
        """
        self.validate_for_database()
        self.validate_for_ai()
        self.validate_for_discovery()
        self.validate_for_outbound()
        self.validate_for_digest()

    def get_database_connection_args(self) -> dict:
        """Get database connection arguments for SQLAlchemy.

        Returns:
            Dictionary of connection arguments.
        """
        return {
            "pool_size": self.DATABASE_POOL_SIZE,
            "max_overflow": self.DATABASE_MAX_OVERFLOW,
            "pool_pre_ping": True,
        }

    def get_log_level(self) -> int:
        """Get logging level as integer.

        Returns:
            Logging level constant (e.g., logging.INFO).
        """
        level_map = {
            "DEBUG": logging.DEBUG,
            "INFO": logging.INFO,
            "WARNING": logging.WARNING,
            "ERROR": logging.ERROR,
            "CRITICAL": logging.CRITICAL,
        }
        return level_map.get(self.LOG_LEVEL.upper(), logging.INFO)


# Create global singleton instance
config = Config()
