import logging
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    KNOWUNITY_API_URL: str = "https://knowunity-agent-olympics-2026-api.vercel.app"
    KNOWUNITY_API_KEY: Optional[str] = None
    OPENAI_API_KEY: Optional[str] = None
    LLM_API_URL: Optional[str] = None
    MODEL_NAME: str = "openai:gpt-4o-mini"

    DATABASE_URL: str = "sqlite+aiosqlite:///./tutorlab.db"
    DATABASE_ECHO: bool = False

    DEFAULT_SET_TYPE: str = "mini_dev"
    BATCH_MAX_CONCURRENT: int = 1
    BACKGROUND_TASK_TIMEOUT: Optional[float] = 300.0
    RELEASE_STALE_ON_START: bool = True
    HTTP_TIMEOUT: float = 60.0
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def database_url(self) -> str:
        """DSN with the async driver filled in for bare Postgres URLs."""
        url = self.DATABASE_URL
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+asyncpg://", 1)
        return url


settings = Settings()


def configure_logging(level: Optional[str] = None):
    """Route library logs to stderr with timestamps."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
    # aiohttp and sqlalchemy are chatty at INFO
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
