"""
Application configuration with environment variables.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from typing import Optional, List


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "QuoteDesk RFQ"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SECRET_KEY: str = "your-secret-key-change-in-production"
    APP_URL: str = "http://localhost:5173"

    # Database
    POSTGRES_USER: str = "quotedesk"
    POSTGRES_PASSWORD: str = "quotedesk"
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: str = "5432"
    POSTGRES_DB: str = "quotedesk"
    DATABASE_URL: Optional[str] = Field(default=None, validate_default=True)

    # Redis / background delivery
    REDIS_URL: str = "redis://redis:6379/0"
    USE_WORKER_QUEUE: bool = False  # send invitations through RQ instead of inline

    # JWT Settings
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Storage
    TEMP_DIR: Optional[str] = None  # None = system temp dir
    MAX_UPLOAD_SIZE: int = 20 * 1024 * 1024  # 20MB

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    # =========================================
    # Workbook Settings
    # =========================================

    WORKBOOK_CREATOR: str = "QuoteDesk RFQ"
    EDITABLE_FILL_COLOR: str = "FFFFD700"
    HEADER_FILL_COLOR: str = "FFE0E0E0"
    SHEET_PROTECTION_PASSWORD: Optional[str] = None

    # =========================================
    # Mail Settings
    # =========================================

    MAIL_TRANSPORT: str = "log"  # smtp, log
    MAIL_FROM: str = "rfq@quotedesk.local"
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 587
    SMTP_USE_TLS: bool = True
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_TIMEOUT: int = 30
    # Explicit opt-in: switch to the logging transport when SMTP is unreachable
    MAIL_FALLBACK_TO_LOG: bool = False

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def assemble_db_url(cls, v: Optional[str], info) -> str:
        if isinstance(v, str) and v:
            return v

        data = info.data
        user = data.get("POSTGRES_USER", "quotedesk")
        password = data.get("POSTGRES_PASSWORD", "quotedesk")
        host = data.get("POSTGRES_HOST", "postgres")
        port = data.get("POSTGRES_PORT", "5432")
        db = data.get("POSTGRES_DB", "quotedesk")

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

    @field_validator('MAIL_TRANSPORT')
    @classmethod
    def validate_mail_transport(cls, v: str) -> str:
        """Only known transports may be configured."""
        value = v.lower().strip()
        if value not in {"smtp", "log"}:
            raise ValueError("MAIL_TRANSPORT must be 'smtp' or 'log'")
        return value

    @field_validator('EDITABLE_FILL_COLOR', 'HEADER_FILL_COLOR')
    @classmethod
    def validate_argb(cls, v: str) -> str:
        """Colours are stored as 8-digit ARGB hex, the form openpyxl reads back."""
        value = v.upper().lstrip("#")
        if len(value) == 6:
            value = "FF" + value
        if len(value) != 8 or any(c not in "0123456789ABCDEF" for c in value):
            raise ValueError(f"Invalid ARGB colour: {v}")
        return value


settings = Settings()
