"""
Room Climate Monitor - Configuration
All settings loaded from environment variables (or a local .env file)
"""

from datetime import timedelta
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database (DATABASE_URL wins over the individual parts)
    database_url: str = ""
    db_host: str = "localhost"
    db_port: int = 5432
    db_user: str = "climate_user"
    db_password: str = ""
    db_name: str = "climate_db"
    db_pool_size: int = 10
    create_tables: bool = True

    # HTTP server
    port: int = 3000

    # Time windows
    retention_days: int = 4
    liveness_minutes: int = 30
    cleanup_interval_minutes: int = 0  # 0 = only on startup and per webhook

    # Charts
    chart_bucket_minutes: int = 60
    outlier_ceilings: dict[str, float] = {"co2": 5000}  # sensor type -> max plausible value

    log_level: str = "INFO"

    @property
    def sqlalchemy_url(self) -> str:
        """Async SQLAlchemy URL for the measurement store."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @property
    def retention_window(self) -> timedelta:
        return timedelta(days=self.retention_days)

    @property
    def liveness_window(self) -> timedelta:
        return timedelta(minutes=self.liveness_minutes)

    class Config:
        env_file = ".env"  # Fallback for local development
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
