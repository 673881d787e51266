"""
Lending Service Configuration

Settings are read from LENDING_* environment variables or a .env file.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class LendingConfig(BaseSettings):
    """Lending service configuration"""
    
    # Storage configuration
    use_sqlite: bool = True
    database_path: str = "lending.db"
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    
    # Security configuration
    auth_enabled: bool = True
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    bootstrap_librarian: Optional[str] = None  # registered at startup if absent
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    
    # Concurrency configuration
    checkout_retry_attempts: int = 5
    retry_backoff_seconds: float = 0.01
    
    # Business rules configuration
    max_outstanding_per_borrower: Optional[int] = None  # None = no cap
    
    # Feature flags
    enable_audit_logging: bool = True
    
    class Config:
        env_prefix = "LENDING_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = LendingConfig()


def get_config() -> LendingConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LendingConfig:
    """Reload configuration from environment"""
    global config
    config = LendingConfig()
    return config
