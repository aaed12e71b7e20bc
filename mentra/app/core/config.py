# mentra/app/core/config.py
"""
Application configuration using pydantic-settings.

Security considerations:
- JOURNAL_ENCRYPTION_KEY is the process-wide secret every entry key is derived from
- The development secret is refused when ENVIRONMENT=production
- Database URLs normalized for async drivers automatically
- CORS_ORIGINS parsed from comma-separated env var, never defaults to "*"
"""
from functools import lru_cache
from typing import List

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEV_ENCRYPTION_KEY = "default_journal_encryption_key_for_development"


class Settings(BaseSettings):
    """
    Strictly typed application settings.

    Priority for loading:
    1. Environment variables (highest priority)
    2. .env file (via pydantic-settings)
    3. Default values (lowest priority, dev-safe only)
    """

    # ─────────────────────────────────────────────────────────────
    # Application metadata
    # ─────────────────────────────────────────────────────────────
    PROJECT_NAME: str = "Mentra Journal Vault"
    PROJECT_VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"

    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # ─────────────────────────────────────────────────────────────
    # Security: JWT verification
    # Tokens are issued elsewhere; this service only decodes them
    # ─────────────────────────────────────────────────────────────
    SECRET_KEY: str = "INSECURE_DEV_KEY_CHANGE_IN_PRODUCTION"
    ALGORITHM: str = "HS256"

    # ─────────────────────────────────────────────────────────────
    # Journal encryption
    # Key material for every entry is derived from this secret + key id
    # ─────────────────────────────────────────────────────────────
    JOURNAL_ENCRYPTION_KEY: str = DEV_ENCRYPTION_KEY
    ENCRYPTION_METHOD: str = "aes256"
    ENCRYPTION_VERSION: int = 1

    # ─────────────────────────────────────────────────────────────
    # Journal limits
    # ─────────────────────────────────────────────────────────────
    WORDS_PER_MINUTE: int = 200
    MAX_TITLE_LENGTH: int = 500
    MAX_CONTENT_LENGTH: int = 100_000
    MAX_TAGS: int = 10
    DEFAULT_PAGE_LIMIT: int = 20
    MAX_PAGE_LIMIT: int = 100
    MAX_BULK_ENTRIES: int = 50

    # ─────────────────────────────────────────────────────────────
    # Database Configuration
    # Priority: DATABASE_URL env var → SQLite fallback for local dev
    # ─────────────────────────────────────────────────────────────
    DATABASE_URL: str = "sqlite+aiosqlite:///./mentra_journal.db"

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """
        Normalize database URLs for async SQLAlchemy compatibility.

        Conversions:
        - postgres://     → postgresql+asyncpg://
        - postgresql://   → postgresql+asyncpg://
        - sqlite:///      → sqlite+aiosqlite:///
        """
        if v is None:
            return "sqlite+aiosqlite:///./mentra_journal.db"

        url = v.strip()

        if url.startswith("postgres://"):
            return url.replace("postgres://", "postgresql+asyncpg://", 1)

        if url.startswith("postgresql://") and "+asyncpg" not in url:
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)

        if url.startswith("sqlite:///") and "+aiosqlite" not in url:
            return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)

        return url

    # MUST be False in production to prevent SQL query exposure
    DATABASE_ECHO: bool = False

    CORS_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    @property
    def BACKEND_CORS_ORIGINS(self) -> List[str]:
        """
        Parse CORS_ORIGINS string into a list of allowed origins.

        Empty string returns empty list, NOT wildcard "*".
        """
        if not self.CORS_ORIGINS or not self.CORS_ORIGINS.strip():
            return []

        return [
            origin.strip()
            for origin in self.CORS_ORIGINS.split(",")
            if origin.strip()
        ]

    @model_validator(mode="after")
    def refuse_dev_secret_in_production(self) -> "Settings":
        if self.is_production and self.JOURNAL_ENCRYPTION_KEY == DEV_ENCRYPTION_KEY:
            raise ValueError("JOURNAL_ENCRYPTION_KEY must be set in production")
        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        # Extra fields in .env are ignored (prevents config injection)
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings instance.

    Settings are loaded once so every component sees the same
    encryption secret and limits.
    """
    return Settings()


settings = get_settings()
