from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+asyncpg://iafa_admin:iafa_secret@db:5432/iafa_db"
    DATABASE_ECHO: bool = False
    AUTO_CREATE_SCHEMA: bool = False
    JWT_SECRET: str = "iafa-jwt-secret-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRY_MINUTES: int = 480
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]
    LOG_LEVEL: str = "INFO"

    # Scheduled jobs
    SCHEDULER_ENABLED: bool = True
    RECONCILE_AUTO_FIX: bool = False

    # Closure status thresholds, in whole months since last_closed_date
    CLOSURE_CURRENT_MAX_MONTHS: int = 1
    CLOSURE_RECENT_MAX_MONTHS: int = 3

    class Config:
        env_file = ".env"


settings = Settings()
