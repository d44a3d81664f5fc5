from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+psycopg2://gradewatch:gradewatch@db:5432/gradewatch"
    OPENAI_API_KEY: str | None = None
    LLM_MODEL_NAME: str = "gpt-4o"
    LLM_TEMPERATURE: float = 0.7
    LLM_MAX_TOKENS: int = 3000

    # Async queue (optional)
    ASYNC_QUEUE_ENABLED: bool = False
    REDIS_URL: str = "redis://redis:6379/0"
    RQ_QUEUE_NAME: str = "gradewatch"
    RQ_JOB_TIMEOUT_SECONDS: int = 600
    RQ_JOB_RETRY_MAX: int = 1

    # Auth
    JWT_SECRET: str = "changethis"  # Should be changed in .env
    JWT_EXPIRES_SECONDS: int = 3600  # 1 hour
    # Comma separated e-mails that always get every permission
    PERMANENT_ADMINS: str = ""

    # Duplicate cleanup
    DUPLICATE_CLEANUP_BATCH_SIZE: int = 100
    DUPLICATE_PREVIEW_LIMIT: int = 50

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def permanent_admin_emails(self) -> set[str]:
        return {e.strip().casefold() for e in self.PERMANENT_ADMINS.split(",") if e.strip()}


settings = Settings()
