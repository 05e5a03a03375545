"""
Application configuration with environment variables.
"""
from pydantic_settings import BaseSettings
from pydantic import ConfigDict, Field, field_validator
from typing import Optional, List


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "PartFlow Sourcing"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SECRET_KEY: str = "your-secret-key-change-in-production"

    # Database
    POSTGRES_USER: str = "partflow"
    POSTGRES_PASSWORD: str = "partflow"
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: str = "5432"
    POSTGRES_DB: str = "partflow"
    DATABASE_URL: Optional[str] = Field(default=None, validate_default=True)

    # Redis (request-status recomputation queue)
    REDIS_URL: str = "redis://redis:6379/0"
    REQUEST_STATUS_HOOK_ENABLED: bool = False
    REQUEST_STATUS_QUEUE: str = "default"
    REQUEST_STATUS_JOB: str = "requests.status.recompute_request_status"

    # JWT Settings
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Price list imports
    MAX_UPLOAD_SIZE: int = 20 * 1024 * 1024  # 20MB
    PRICE_LIST_MAX_ROWS: int = 50000

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def assemble_db_url(cls, v: Optional[str], info) -> str:
        if isinstance(v, str) and v:
            return v

        data = info.data
        user = data.get("POSTGRES_USER", "partflow")
        password = data.get("POSTGRES_PASSWORD", "partflow")
        host = data.get("POSTGRES_HOST", "postgres")
        port = data.get("POSTGRES_PORT", "5432")
        db = data.get("POSTGRES_DB", "partflow")

        return f"postgresql://{user}:{password}@{host}:{port}/{db}"

    @field_validator('SECRET_KEY')
    @classmethod
    def validate_secret_key(cls, v: str, info) -> str:
        """Reject weak SECRET_KEY in production, warn in development."""
        weak_keys = {
            "your-secret-key-change-in-production",
            "change-me-in-production",
            "secret",
            "changeme",
        }
        is_weak = v in weak_keys or len(v) < 32
        if is_weak:
            debug = info.data.get("DEBUG", False)
            if not debug:
                raise ValueError(
                    "SECRET_KEY is weak or default. "
                    "Generate a strong key with: openssl rand -hex 32"
                )
            import warnings
            warnings.warn(
                "SECRET_KEY is weak or default! Set a strong key before deploying.",
                UserWarning,
                stacklevel=2,
            )
        return v

    @field_validator('PRICE_LIST_MAX_ROWS')
    @classmethod
    def validate_max_rows(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("PRICE_LIST_MAX_ROWS must be positive")
        return v


settings = Settings()
