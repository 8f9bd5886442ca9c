"""
Configuration for Analytics Reports Service
"""

import os
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Analytics reports configuration"""

    # Service configuration
    SERVICE_NAME: str = "analytics_reports"
    HOST: str = "0.0.0.0"
    PORT: int = 8012

    # Storage locations
    EXPORT_DIR: str = os.getenv("EXPORT_DIR", "exports")
    SCHEDULES_DIR: str = os.getenv("SCHEDULES_DIR", "schedules")
    TEMPLATES_DIR: Optional[str] = os.getenv("TEMPLATES_DIR")
    RECORDS_FILE: Optional[str] = os.getenv("RECORDS_FILE")
    DOWNLOAD_URL_PREFIX: str = "/api/exports"

    # Generation
    REPORT_EXPIRY_DAYS: int = 30
    TABLE_MAX_ROWS: int = 100
    GENERATION_TIMEOUT_SECONDS: float = 300.0
    PROGRESS_TTL_SECONDS: float = 3600.0
    ENABLE_CHART_IMAGES: bool = False

    # Scheduling
    SCHEDULER_TICK_SECONDS: float = 60.0
    SCHEDULE_EXECUTION_TIMEOUT_SECONDS: float = 900.0
    DEFAULT_SCHEDULE_HOUR: int = 8
    EXECUTION_HISTORY_LIMIT: int = 1000

    # Email delivery
    SMTP_HOST: Optional[str] = os.getenv("SMTP_HOST")
    SMTP_PORT: int = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME: Optional[str] = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD: Optional[str] = os.getenv("SMTP_PASSWORD")
    SMTP_FROM_EMAIL: Optional[str] = os.getenv("SMTP_FROM_EMAIL")
    SMTP_FROM_NAME: str = "Analytics Reports"
    SMTP_USE_TLS: bool = True
    SMTP_TIMEOUT: float = 30.0

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_JSON: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
