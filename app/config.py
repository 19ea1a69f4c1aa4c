from typing import Dict, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application Config
    PROJECT_NAME: str = Field(default="Bloodline API", env="PROJECT_NAME")
    PROJECT_DESCRIPTION: str = Field(
        default="Blood donor matching and request coordination",
        env="PROJECT_DESCRIPTION",
    )
    VERSION: str = Field(default="1.0.0", env="VERSION")
    API_PREFIX: str = Field(default="/api", env="API_PREFIX")
    DOCS_URL: str = Field(default="/docs", env="DOCS_URL")

    # Environment
    ENVIRONMENT: str = Field(default="development", env="ENVIRONMENT")
    DEBUG: bool = Field(default=True, env="DEBUG")

    # Database
    DATABASE_URL: str = Field(default="", env="DATABASE_URL")
    DATABASE_POOL_SIZE: int = Field(default=5, env="DATABASE_POOL_SIZE")
    DATABASE_MAX_OVERFLOW: int = Field(default=10, env="DATABASE_MAX_OVERFLOW")

    # Development database fallback
    DEV_DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./db.sqlite3", env="DEV_DATABASE_URL"
    )

    # Security (tokens are issued by the identity provider, verified here)
    SECRET_KEY: str = Field(default="dev-secret-key", env="SECRET_KEY")
    ALGORITHM: str = Field(default="HS256", env="ALGORITHM")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(
        default=180, env="ACCESS_TOKEN_EXPIRE_MINUTES"
    )

    # CORS Configuration
    BACKEND_CORS_ORIGINS: list[str] = Field(
        default=[
            "http://localhost:3000",
            "http://localhost",
        ]
    )

    # Logging
    LOG_LEVEL: str = Field(default="INFO", env="LOG_LEVEL")
    LOG_TO_FILE: bool = Field(default=True, env="LOG_TO_FILE")
    LOG_DIR: str = Field(default="logs", env="LOG_DIR")

    # Donor matching
    DONATION_ELIGIBILITY_DAYS: int = Field(
        default=90, env="DONATION_ELIGIBILITY_DAYS"
    )
    URGENCY_EXPIRY_HOURS: Dict[str, int] = Field(
        default={"critical": 3, "high": 6, "medium": 12, "low": 24}
    )
    URGENCY_SEARCH_RADIUS_KM: Dict[str, float] = Field(
        default={"critical": 10, "high": 7, "medium": 5, "low": 3}
    )
    # Upper bound on donors notified per request; None disables the cap
    DONOR_FANOUT_LIMIT: Optional[int] = Field(default=250, env="DONOR_FANOUT_LIMIT")
    DONOR_SEARCH_DEFAULT_KM: float = Field(default=5, env="DONOR_SEARCH_DEFAULT_KM")

    # Optimistic concurrency on request updates
    REQUEST_UPDATE_MAX_RETRIES: int = Field(
        default=3, env="REQUEST_UPDATE_MAX_RETRIES"
    )

    # Real-time delivery
    SSE_QUEUE_SIZE: int = Field(default=100, env="SSE_QUEUE_SIZE")
    SSE_HEARTBEAT_SECONDS: int = Field(default=30, env="SSE_HEARTBEAT_SECONDS")

    # Pydantic v2 config
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    def model_post_init(self, __context) -> None:
        """Post-initialization validation and setup"""
        if isinstance(self.BACKEND_CORS_ORIGINS, str):
            self.BACKEND_CORS_ORIGINS = [
                origin.strip() for origin in self.BACKEND_CORS_ORIGINS.split(",")
            ]

        if self.ENVIRONMENT.lower() == "production":
            if not self.DATABASE_URL:
                raise ValueError("DATABASE_URL must be set in production!")
            if not self.SECRET_KEY or self.SECRET_KEY == "dev-secret-key":
                raise ValueError(
                    "SECRET_KEY must be set to a secure value in production!"
                )
        else:
            # Outside production fall back to the local SQLite database
            if not self.DATABASE_URL:
                self.DATABASE_URL = self.DEV_DATABASE_URL


# Instantiate settings
settings = Settings()
