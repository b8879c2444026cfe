"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class LoanTrackerConfig(BaseSettings):
    """Loan tracker configuration"""
    
    model_config = SettingsConfigDict(
        env_prefix="LOAN_TRACKER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )
    
    # Storage configuration
    database_path: str = "loan_tracker.db"  # ":memory:" for throwaway runs
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    
    # Scheduler configuration
    scan_interval_seconds: int = 24 * 60 * 60  # Once per day
    reminder_window_days: int = 7
    notification_timeout_seconds: float = 10.0
    notification_timezone: str = "UTC"  # Calendar used for "due today"
    claim_ttl_seconds: int = 6 * 60 * 60  # Timed-out sends stay claimed this long
    
    # Delivery configuration
    notification_gateway: str = "log"  # log, email or webhook
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_sender: Optional[str] = None  # Defaults to smtp_user
    webhook_url: str = ""
    
    # Message rendering
    app_name: str = "Finance App"
    currency_symbol: str = "₹"


# Global configuration instance
config = LoanTrackerConfig()


def get_config() -> LoanTrackerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LoanTrackerConfig:
    """Reload configuration from environment"""
    global config
    config = LoanTrackerConfig()
    return config
