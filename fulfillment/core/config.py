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
    APP_NAME: str = "Fulfillment Core"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SECRET_KEY: str = "your-secret-key-change-in-production"

    # Database
    POSTGRES_USER: str = "fulfillment"
    POSTGRES_PASSWORD: str = "fulfillment"
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: str = "5432"
    POSTGRES_DB: str = "fulfillment"
    DATABASE_URL: Optional[str] = Field(default=None, validate_default=True)
    SQL_ECHO: bool = False
    SQLITE_BUSY_TIMEOUT: int = 15  # seconds a SQLite writer waits for the lock

    # JWT Settings (tokens are issued by the identity service, only verified here)
    JWT_ALGORITHM: str = "HS256"

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Demo seeding - MUST be false in production
    SEED_DEMO: bool = False

    # =========================================
    # Fulfillment rules
    # =========================================

    # Tracking numbers with this prefix carry caller-supplied carrier data
    MANUAL_CARRIER_PREFIX: str = "TKP0"

    # Renaming applied to the original order when it is duplicated
    DUPLICATE_TRACKING_PREFIX: str = "X-"
    DUPLICATE_ORDER_SUFFIX: str = "-X2"

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def assemble_db_url(cls, v: Optional[str], info) -> str:
        if isinstance(v, str) and v:
            return v

        data = info.data
        user = data.get("POSTGRES_USER", "fulfillment")
        password = data.get("POSTGRES_PASSWORD", "fulfillment")
        host = data.get("POSTGRES_HOST", "postgres")
        port = data.get("POSTGRES_PORT", "5432")
        db = data.get("POSTGRES_DB", "fulfillment")

        return f"postgresql+psycopg2://{user}:{password}@{host}:{port}/{db}"

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

    @field_validator('SEED_DEMO')
    @classmethod
    def validate_seed_demo(cls, v: bool, info) -> bool:
        """Prevent demo seeding in production."""
        if v and not info.data.get("DEBUG", False):
            raise ValueError(
                "SEED_DEMO=true is not allowed when DEBUG=false. "
                "Demo seeding creates predictable staff accounts."
            )
        return v

    @field_validator('POSTGRES_PASSWORD')
    @classmethod
    def validate_postgres_password(cls, v: str, info) -> str:
        """Reject default database password in production."""
        weak = {"fulfillment", "postgres", "password", "changeme", ""}
        if v in weak and not info.data.get("DEBUG", False):
            raise ValueError(
                "POSTGRES_PASSWORD is set to a default value. "
                "Set a strong database password for production."
            )
        return v

    @field_validator('MANUAL_CARRIER_PREFIX', 'DUPLICATE_TRACKING_PREFIX', 'DUPLICATE_ORDER_SUFFIX')
    @classmethod
    def normalize_markers(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("Tracking markers cannot be empty")
        return v


settings = Settings()
