"""
Core application configuration using Pydantic Settings.

All environment variables are loaded here and validated.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    # App Configuration
    APP_NAME: str = "Inbox Sweeper"
    APP_URL: str = "http://localhost:8000"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # Database
    DATABASE_URL: str

    # Security & Encryption
    SECRET_KEY: str  # Session cookie + CSRF signing
    ENCRYPTION_KEY: str  # For Fernet token encryption (44-char base64)

    # OAuth - Google
    # Optional at startup; the refresh path fails with a configuration error without them
    GOOGLE_CLIENT_ID: Optional[str] = None
    GOOGLE_CLIENT_SECRET: Optional[str] = None
    GOOGLE_REDIRECT_URI: Optional[str] = None

    # Redis (OAuth state, shared token cache)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Token cache backend: 'memory' (process-local) | 'redis' (shared across instances)
    TOKEN_CACHE_BACKEND: str = "memory"

    # Per-IP request limiting (slowapi); falls back to REDIS_URL
    RATE_LIMIT_STORAGE_URI: Optional[str] = None

    # Sentry Monitoring
    SENTRY_DSN: Optional[str] = None

    # Gmail API
    GMAIL_API_BASE_URL: str = "https://gmail.googleapis.com/gmail/v1/users/me"
    GMAIL_HTTP_TIMEOUT_SECONDS: float = 10.0

    # Super Actions batching (Gmail API quota safety)
    SUPER_ACTIONS_PER_SECOND: int = 20  # 75% of Gmail's per-user limit
    SUPER_ACTIONS_BATCH_SIZE: int = 50
    SUPER_ACTIONS_ITEM_DELAY_SECONDS: float = 0.05
    SUPER_ACTIONS_BATCH_DELAY_SECONDS: float = 2.5
    SUPER_ACTIONS_MAX_BATCH_DELAY_SECONDS: float = 30.0
    SUPER_ACTIONS_MAX_WAIT_SECONDS: int = 120  # Max time to wait for a rate window

    # Safe senders required before Super Actions unlock
    MIN_SAFE_SENDERS: int = 3

    # Undo window for bulk jobs
    UNDO_WINDOW_DAYS: int = 29

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Set Google redirect URI if not set
        if not self.GOOGLE_REDIRECT_URI:
            self.GOOGLE_REDIRECT_URI = f"{self.APP_URL}/auth/google/callback"
        if not self.RATE_LIMIT_STORAGE_URI:
            self.RATE_LIMIT_STORAGE_URI = self.REDIS_URL

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def has_google_credentials(self) -> bool:
        """Check if Google OAuth client credentials are configured."""
        return bool(self.GOOGLE_CLIENT_ID and self.GOOGLE_CLIENT_SECRET)


# Global settings instance
settings = Settings()
