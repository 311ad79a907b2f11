"""
Application Configuration

Uses Pydantic Settings for environment variable management.
Supports both development (SQLite) and production (PostgreSQL).
"""
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # ===========================================
    # APPLICATION
    # ===========================================
    APP_NAME: str = "docaccess"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = Field(default="development")  # development, test, production
    DEBUG: bool = Field(default=False)

    # ===========================================
    # DATABASE
    # ===========================================
    # Use SQLite for development, PostgreSQL for production
    DATABASE_URL: str = Field(default="sqlite:///./data/docaccess.db")

    # PostgreSQL settings (when DATABASE_URL starts with postgresql://)
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10

    # ===========================================
    # INDEX INTEGRITY
    # ===========================================
    # None = check after every structural mutation outside production
    CHECK_INVARIANTS: Optional[bool] = Field(default=None)

    # ===========================================
    # RESOLUTION CACHE
    # ===========================================
    RESOLUTION_CACHE_TTL_SECONDS: float = 30.0
    RESOLUTION_CACHE_MAX_ENTRIES: int = 100_000

    # ===========================================
    # LOGGING
    # ===========================================
    LOG_LEVEL: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="DOCACCESS_",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_sqlite(self) -> bool:
        """Check if using SQLite database"""
        return self.DATABASE_URL.startswith("sqlite")

    @property
    def is_postgres(self) -> bool:
        """Check if using PostgreSQL database"""
        return self.DATABASE_URL.startswith("postgresql")

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.strip().lower() == "production"

    @property
    def should_check_invariants(self) -> bool:
        """Whether structural mutations verify the closure tables before commit"""
        if self.CHECK_INVARIANTS is not None:
            return self.CHECK_INVARIANTS
        return not self.is_production


# Global settings instance
settings = Settings()
