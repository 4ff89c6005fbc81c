from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load variables from .env if present
load_dotenv()

class Settings(BaseSettings):
    """Project configuration loaded from environment variables or .env file."""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="",
        extra="ignore",  # Ignore unknown env keys (e.g., API_PORT)
    )

    # Database settings with aliases for UPPERCASE env vars
    postgres_dsn: str | None = Field(None, alias="POSTGRES_DSN")
    postgres_host: str = Field("localhost", alias="POSTGRES_HOST")
    postgres_port: int = Field(5432, alias="POSTGRES_PORT")
    postgres_db: str = Field("orderhub", alias="POSTGRES_DB")
    postgres_user: str = Field("orderhub", alias="POSTGRES_USER")
    postgres_password: str = Field("orderhub", alias="POSTGRES_PASSWORD")
    db_pool_size: int = Field(5, alias="DB_POOL_SIZE", gt=0)
    db_max_overflow: int = Field(10, alias="DB_MAX_OVERFLOW", ge=0)
    db_echo: bool = Field(False, alias="DB_ECHO")

    # Bounded wait for the per-order row lock
    order_lock_timeout_ms: int = Field(5000, alias="ORDER_LOCK_TIMEOUT_MS", gt=0)

    # Category taxonomy
    slug_max_length: int = Field(200, alias="SLUG_MAX_LENGTH", gt=0)
    default_locale: str = Field("ru", alias="DEFAULT_LOCALE")

    # Identity tokens are issued elsewhere, we only verify them
    secret_key: str = Field("change-me", alias="SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")

    # Notification dispatch
    redis_host: str = Field("localhost", alias="REDIS_HOST")
    redis_port: int = Field(6379, alias="REDIS_PORT")
    celery_broker_url: str | None = Field(None, alias="CELERY_BROKER_URL")
    celery_result_backend: str | None = Field(None, alias="CELERY_RESULT_BACKEND")
    # Publish attempts per event before the dispatcher gives up
    celery_publish_retries: int = Field(2, alias="CELERY_PUBLISH_RETRIES", ge=0)

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    @property
    def database_url(self) -> str:
        """Construct database URL from components or use DSN if provided."""
        if self.postgres_dsn:
            return self.postgres_dsn
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def celery_broker(self) -> str:
        return self.celery_broker_url or f"redis://{self.redis_host}:{self.redis_port}/0"

    @property
    def celery_backend(self) -> str:
        return self.celery_result_backend or f"redis://{self.redis_host}:{self.redis_port}/1"

    @model_validator(mode='after')
    def validate_database_config(self) -> 'Settings':
        """Validate database configuration."""
        if not self.postgres_dsn and not all([
            self.postgres_host,
            self.postgres_port,
            self.postgres_db,
            self.postgres_user,
            self.postgres_password
        ]):
            raise ValueError(
                "Either POSTGRES_DSN or all database connection parameters must be provided"
            )
        if self.default_locale not in ("ru", "uz"):
            raise ValueError("DEFAULT_LOCALE must be 'ru' or 'uz'")
        return self

@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
