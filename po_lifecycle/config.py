from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    APP_NAME: str = "PO Lifecycle"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    PORT: int = 8000

    # Persistence: asyncpg in production, aiosqlite locally and in tests
    DATABASE_URL: str = "sqlite+aiosqlite:///./po_lifecycle.db"
    DATABASE_SYNC_URL: str = ""
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_RECYCLE: int = 300
    DB_SSL: bool = False

    # Status snapshot cache (Upstash REST); empty URL disables it
    UPSTASH_REDIS_REST_URL: str = ""
    UPSTASH_REDIS_REST_TOKEN: str = ""
    PO_SNAPSHOT_CACHE_TTL: int = 300

    # Identity provider public key; the private key is only for tooling
    JWT_PUBLIC_KEY_PATH: Optional[str] = "keys/public.pem"
    JWT_PRIVATE_KEY_PATH: Optional[str] = "keys/private.pem"
    JWT_ALGORITHM: str = "RS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15

    # Lifecycle
    VENDOR_TOKEN_TTL_HOURS: int = 72
    VENDOR_ACCEPT_URL: str = "http://localhost:3000/vendor/accept-po"
    DEFAULT_CURRENCY: str = "USD"

    # Notifications
    BREVO_API_KEY: Optional[str] = None
    EMAIL_FROM_ADDRESS: str = "noreply@po-lifecycle.example.com"
    PROCUREMENT_TEAM_EMAILS: str = ""

    CORS_ORIGINS: str = "http://localhost:3000"

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",")]

    @property
    def procurement_team_emails(self) -> list[str]:
        return [e.strip() for e in self.PROCUREMENT_TEAM_EMAILS.split(",") if e.strip()]

    @property
    def migration_url(self) -> str:
        """Synchronous URL for alembic, derived from DATABASE_URL unless set."""
        if self.DATABASE_SYNC_URL:
            return self.DATABASE_SYNC_URL
        return (
            self.DATABASE_URL.replace("+aiosqlite", "")
            .replace("+asyncpg", "+psycopg2")
        )

    @property
    def snapshot_cache_enabled(self) -> bool:
        return bool(self.UPSTASH_REDIS_REST_URL)

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
