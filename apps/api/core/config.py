"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the engine, the store
and the HTTP layer.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # Database Configuration
    DATABASE_URL: str = Field(default="sqlite:///./training_engine.db")
    DB_POOL_SIZE: int = Field(default=10)
    DB_MAX_OVERFLOW: int = Field(default=5)
    # Applies to pool checkout, sqlite busy wait and postgres statement_timeout
    DB_TIMEOUT_SECONDS: int = Field(default=10)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # Cache Configuration
    CACHE_BACKEND: str = Field(default="memory")  # memory or redis
    REDIS_URL: Optional[str] = Field(default=None)
    CACHE_TTL_DEFAULT: int = Field(default=300)  # 5 minutes
    CACHE_TTL_ASSESSMENT: int = Field(default=3600)  # 1 hour

    # Plan policy
    PLAN_TOTAL_WEEKS: int = Field(default=8)
    PLAN_DELOAD_INTERVAL: int = Field(default=4)  # 0 disables deload weeks
    PLAN_DELOAD_FACTOR: float = Field(default=0.8)
    PLAN_HONOR_RECOMMENDED_WEEKS: bool = Field(default=False)

    # Progression
    PROGRESSION_MAX_RETRIES: int = Field(default=5)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="text")  # json or text

    @field_validator("CACHE_BACKEND")
    @classmethod
    def validate_cache_backend(cls, v: str) -> str:
        if v not in ("memory", "redis"):
            raise ValueError("CACHE_BACKEND must be 'memory' or 'redis'")
        return v

    @field_validator("PLAN_TOTAL_WEEKS")
    @classmethod
    def validate_plan_weeks(cls, v: int) -> int:
        if v < 1 or v > 52:
            raise ValueError("PLAN_TOTAL_WEEKS must be between 1 and 52")
        return v

    @field_validator("PLAN_DELOAD_INTERVAL", "PROGRESSION_MAX_RETRIES")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @field_validator("PLAN_DELOAD_FACTOR")
    @classmethod
    def validate_deload_factor(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("PLAN_DELOAD_FACTOR must be in (0, 1]")
        return v


# Global settings instance
settings = Settings()
