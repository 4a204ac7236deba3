"""
Application Configuration

Centralized settings management using Pydantic Settings.
Supports environment variables and .env files.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # ==========================================================================
    # App Settings
    # ==========================================================================
    APP_NAME: str = "Imagery Relay Gateway"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, PROD
    DEBUG: bool = True

    # ==========================================================================
    # Broker (Redis lists used as topics)
    # ==========================================================================
    REDIS_URL: str = "redis://localhost:6379/0"
    BROKER_CLIENT_ID: str = "producer-1"
    BROKER_JOB_TOPIC: str = "image-jobs"
    BROKER_REPLY_TOPIC: str = "image-replies"

    # Long-poll block per cycle and pause between cycles
    BROKER_POLL_TIMEOUT_SECONDS: float = 1.0
    BROKER_POLL_INTERVAL_SECONDS: float = 0.1
    BROKER_MAX_RECORDS_PER_POLL: int = 100
    BROKER_ERROR_BACKOFF_SECONDS: float = 1.0

    # ==========================================================================
    # Correlation
    # ==========================================================================
    REPLY_TIMEOUT_SECONDS: float = 30.0

    # ==========================================================================
    # Storage Settings
    # ==========================================================================
    LOCAL_STORAGE_PATH: str = "./data/storage"
    STORAGE_BUCKET: str = "images"

    # Processed results are copied here and served under /images
    PROCESSED_IMAGES_DIR: str = "./static/images"
    STATIC_DIR: str = "./static"

    # ==========================================================================
    # Upload Limits
    # ==========================================================================
    MAX_UPLOAD_SIZE_BYTES: int = 5242880  # 5MB
    MAX_FILES: int = 10

    # ==========================================================================
    # Logging Settings
    # ==========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT_JSON: bool = True  # JSON for production, console for development

    # ==========================================================================
    # CORS Settings
    # ==========================================================================
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:8080"

    # Per-dependency budget for /ready
    READY_CHECK_TIMEOUT_SECONDS: float = 2.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Global settings instance
settings = Settings()
