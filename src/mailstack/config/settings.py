"""
Application Settings using Pydantic Settings
Loads configuration from environment variables (.env file)
"""

from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..orchestrator.retry import RetryPolicy
from ..utils.timezone import TimezoneHandler


class Settings(BaseSettings):
    """
    Orchestrator configuration settings
    All values can be overridden via MAILSTACK_* environment variables
    """

    model_config = SettingsConfigDict(
        env_prefix="MAILSTACK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ========================
    # Application Settings
    # ========================
    app_env: Literal["development", "staging", "production"] = Field(
        default="production",
        description="Application environment"
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level"
    )

    log_file: Optional[Path] = Field(
        default=None,
        description="Also append log lines to this file"
    )

    timezone: str = Field(
        default="UTC",
        description="Timezone used to render report timestamps"
    )

    # ========================
    # Mail Stack Configuration
    # ========================
    domain: str = Field(
        default="example.com",
        description="Mail domain, passed to the PostSRSD fallback launcher"
    )

    services_file: Optional[Path] = Field(
        default=None,
        description="JSON service catalog (built-in mail stack when unset)"
    )

    postsrsd_secret: Path = Field(
        default=Path("/etc/postsrsd/postsrsd.secret"),
        description="PostSRSD secret file used by the fallback launcher"
    )

    # ========================
    # Timing Configuration
    # ========================
    start_timeout_seconds: float = Field(
        default=30,
        gt=0,
        le=600,
        description="Seconds to wait for a unit to become active"
    )

    active_poll_interval_seconds: float = Field(
        default=1,
        gt=0,
        le=60,
        description="Seconds between is-active checks"
    )

    port_poll_attempts: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Port checks before a service is declared unbound"
    )

    port_poll_interval_seconds: float = Field(
        default=2,
        ge=0,
        le=60,
        description="Seconds between port checks"
    )

    stop_grace_seconds: float = Field(
        default=2,
        ge=0,
        le=60,
        description="Seconds between a stop request and the kill sweep"
    )

    restart_pause_seconds: float = Field(
        default=3,
        ge=0,
        le=60,
        description="Seconds between stop-all and start-all"
    )

    connect_timeout_seconds: float = Field(
        default=3,
        gt=0,
        le=60,
        description="TCP connect probe timeout"
    )

    health_check_interval_seconds: float = Field(
        default=60,
        gt=0,
        description="Seconds between checks in watch mode"
    )

    # ========================
    # Validators
    # ========================
    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate the timezone name is known"""
        TimezoneHandler.get_timezone(v)
        return v

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        """Domains are stored lower-case without a trailing dot"""
        v = v.strip().rstrip(".").lower()
        if not v or " " in v:
            raise ValueError(f"Invalid domain: {v!r}")
        return v

    # ========================
    # Helper Methods
    # ========================
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.app_env == "production"

    def retry_policy(self) -> RetryPolicy:
        """Build the orchestrator timing budget"""
        return RetryPolicy(
            start_timeout=self.start_timeout_seconds,
            active_poll_interval=self.active_poll_interval_seconds,
            port_attempts=self.port_poll_attempts,
            port_interval=self.port_poll_interval_seconds,
            stop_grace=self.stop_grace_seconds,
            restart_pause=self.restart_pause_seconds
        )

    def get_log_config(self, stream: str = "ext://sys.stdout") -> dict:
        """
        Get logging configuration

        Args:
            stream: Console stream; machine-readable output moves logs to stderr
        """
        handlers = {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default" if self.is_production() else "detailed",
                "stream": stream,
            },
        }
        if self.log_file:
            handlers["file"] = {
                "class": "logging.FileHandler",
                "formatter": "detailed",
                "filename": str(self.log_file),
                "encoding": "utf-8",
            }

        return {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "[%(asctime)s] [%(levelname)s] %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
                "detailed": {
                    "format": "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
            },
            "handlers": handlers,
            "root": {
                "level": self.log_level,
                "handlers": list(handlers),
            },
        }


# ========================
# Global Settings Instance
# ========================
settings: Optional[Settings] = None


# ========================
# Convenience Functions
# ========================
def get_settings() -> Settings:
    """
    Get settings instance
    Loaded lazily so importing the package never reads the environment
    """
    global settings
    if settings is None:
        settings = Settings()
    return settings


def reload_settings() -> Settings:
    """
    Reload settings from environment
    Useful for testing
    """
    global settings
    settings = Settings()
    return settings
