"""Application configuration."""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings."""

    # App
    APP_NAME: str = "LabFlow"
    ENV: str = "development"
    DEBUG: bool = True
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Database
    DATABASE_URL: str = "postgresql://localhost:5432/labflow"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Celery (notification outbox worker)
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"
    OUTBOX_BATCH_SIZE: int = 100
    OUTBOX_MAX_ATTEMPTS: int = 3

    # JWT issued by the external auth service; we only verify it.
    JWT_SECRET_KEY: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    JWT_LEEWAY_SECONDS: int = 30  # clock skew tolerance for exp validation

    # Order lifecycle
    DEADLINE_BUSINESS_DAYS: int = 5
    PRODUCTION_INITIAL_STAGE: str = "iniciado"
    # Kanban statuses that always mean "in production", compared after normalization.
    PRODUCTION_STATUS_IDS: str = "in_progress,em producao"
    # Legacy rule: numeric status ids >= 2 count as production. Off unless old data needs it.
    LEGACY_NUMERIC_STAGE_HEURISTIC: bool = False
    TEAM_ROLES: str = "administrator,admin,manager,tecnico,atendente"

    # Board client
    API_BASE_URL: str = "http://localhost:8000"
    API_TIMEOUT_SECONDS: int = 10

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    @property
    def team_roles_list(self) -> list[str]:
        """Roles that receive order-wide notifications."""
        return [role.strip() for role in self.TEAM_ROLES.split(",") if role.strip()]

    @property
    def production_status_ids_list(self) -> list[str]:
        return [value.strip() for value in self.PRODUCTION_STATUS_IDS.split(",") if value.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
