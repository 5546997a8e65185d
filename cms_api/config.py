from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    APP_NAME: str = "Bank CMS"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    PORT: int = 5000

    DATABASE_URL: str = "postgresql+asyncpg://localhost:5432/bank_cms"
    DATABASE_SYNC_URL: str = ""
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_RECYCLE: int = 300
    DB_SSL: bool = False

    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 12
    INTERNAL_JOB_SECRET: Optional[str] = None  # Required in production for /internal/jobs/* auth
    CORS_ORIGINS: str = "http://localhost:3000"

    # Public URL of this service, used to build upload locators.
    # Falls back to the inbound request's scheme and host when unset.
    PUBLIC_BASE_URL: Optional[str] = None
    STORAGE_BACKEND: str = "local"  # "local" | "r2"
    UPLOAD_DIR: str = "uploads"
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024

    R2_ACCOUNT_ID: str = ""
    R2_ACCESS_KEY_ID: str = ""
    R2_SECRET_ACCESS_KEY: str = ""
    R2_BUCKET_NAME: str = "bank-cms-uploads"
    R2_ENDPOINT_URL: str = ""
    R2_PUBLIC_BASE_URL: str = ""

    FX_SOURCE_URL: str = "https://api.exchangerate-api.com/v4/latest/TZS"
    FX_SOURCE_TIMEOUT_SECONDS: float = 10.0
    FX_SPREAD: float = 0.02
    FX_BASE_CURRENCY: str = "TZS"
    FX_SYNC_SCHEDULER_ENABLED: bool = False
    FX_SYNC_HOUR: int = 7
    FX_SYNC_MINUTE: int = 0
    FX_SYNC_TIMEZONE: str = "Africa/Dar_es_Salaam"

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
