"""Application configuration."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,  # so DB_HOST works regardless of case
        extra="ignore",
    )

    # Database fields (read from .env)
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "lead_pipeline"
    db_user: str = "postgres"
    db_password: str = "postgres"

    # Construct database URL dynamically
    @property
    def database_url(self) -> str:
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    # OpenAI (or compatible API, e.g. Gemini's OpenAI endpoint)
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str | None = None

    generation_timeout_seconds: float = 10.0
    generation_max_retries: int = 2
    generation_backoff_base_seconds: float = 1.0
    generation_min_interval_seconds: float = 0.0

    # AES-256-GCM key for encrypted message bodies, 64 hex chars
    encryption_key: str = ""

    # Pipeline
    concurrency_limit: int = 5
    poll_interval_seconds: float = 2.0
    poll_batch_size: int | None = None
    dispatcher_enabled: bool = True

    # App
    log_level: str = "INFO"

    @property
    def effective_batch_size(self) -> int:
        return self.poll_batch_size or self.concurrency_limit


settings = Settings()
