"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class ReminderEngineConfig(BaseSettings):
    """Reminder engine configuration"""
    
    # Storage configuration
    database_path: str = "reminders.db"
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout
    
    # Due date classification
    due_soon_days: int = 3  # Days before due date counted as "due soon"
    
    # Smart schedule heuristics
    short_terms_max_net_days: int = 15  # Custom terms up to this many days use the short schedule
    default_payment_term: str = "Net 30"
    
    # Money
    default_currency: str = "USD"
    
    # Actor recorded in structured logs for engine-driven changes
    system_actor: str = "SYSTEM"
    
    class Config:
        env_prefix = "REMINDER_ENGINE_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = ReminderEngineConfig()


def get_config() -> ReminderEngineConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> ReminderEngineConfig:
    """Reload configuration from environment"""
    global config
    config = ReminderEngineConfig()
    return config
