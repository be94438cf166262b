"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class EwalletConfig(BaseSettings):
    """E-wallet ledger configuration"""

    model_config = SettingsConfigDict(
        env_prefix="EWALLET_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Database configuration
    database_url: str = "sqlite:///ewallet.db"  # or memory://
    lock_timeout_seconds: float = 10.0  # Wait for a contended account before giving up

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 5000

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    amount_precision: int = 2

    # Feature flags
    enable_audit_logging: bool = True


# Global configuration instance
config = EwalletConfig()


def get_config() -> EwalletConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> EwalletConfig:
    """Reload configuration from environment"""
    global config
    config = EwalletConfig()
    return config
