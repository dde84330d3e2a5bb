from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import List, Optional


INSECURE_KEY_PATTERNS = [
    "your-secret-key",
    "change-this",
    "secret",
    "password",
    "123456",
    "changeme",
]


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"

    # Security: SECRET_KEY signs JWTs, ENCRYPTION_KEY protects Plaid access tokens
    # Generate with: python -c "import secrets; print(secrets.token_urlsafe(32))"
    SECRET_KEY: str  # REQUIRED - no default for security
    ENCRYPTION_KEY: str  # REQUIRED - no default for security
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440  # 24 hours
    REFRESH_TOKEN_EXPIRE_DAYS: int = 30
    JWT_ISSUER: str = "budget-app"
    JWT_AUDIENCE: str = "budget-app-users"
    SESSION_TIMEOUT_MINUTES: int = 15
    COOKIE_SECURE: Optional[bool] = None  # Defaults to True in production

    # Database configuration
    DATABASE_URL: str  # PostgreSQL URL (required)

    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    # Rate limiting (slowapi limit strings)
    RATE_LIMIT_ENABLED: bool = True
    AUTH_RATE_LIMIT: str = "5/15minutes"
    API_RATE_LIMIT: str = "100/15minutes"
    SYNC_RATE_LIMIT: str = "1/minute"

    # Background job / Redis configuration
    REDIS_URL: str = "redis://redis:6379/0"
    REPORT_CACHE_TTL_SECONDS: int = 300

    # Plaid configuration
    PLAID_CLIENT_ID: Optional[str] = None
    PLAID_SECRET: Optional[str] = None
    PLAID_ENVIRONMENT: str = "sandbox"  # sandbox, development, or production
    PLAID_CLIENT_NAME: str = "Budget App"
    PLAID_QUEUE_NAME: str = "plaid_sync"
    PLAID_JOB_TIMEOUT: int = 1800  # 30 minutes

    # Local LLM (Ollama) used as the last categorization step
    OLLAMA_ENABLED: bool = False
    OLLAMA_URL: str = "http://ollama:11434"
    OLLAMA_MODEL: str = "mistral"

    # Account polling
    SYNC_SCHEDULER_ENABLED: bool = True
    SYNC_INTERVAL_HOURS: int = 24
    SYNC_INITIAL_DELAY_SECONDS: int = 60
    SYNC_MAX_RETRIES: int = 3
    SYNC_BASE_RETRY_DELAY_SECONDS: int = 3600  # 1 hour, doubled per retry
    SYNC_ACCOUNT_DELAY_SECONDS: float = 1.0

    @field_validator("SECRET_KEY", "ENCRYPTION_KEY")
    @classmethod
    def _validate_key_strength(cls, value, info):
        """
        Reject short keys and keys containing obvious placeholder values.
        """
        if not value or len(value) < 32:
            raise ValueError(
                f"{info.field_name} must be at least 32 characters long. "
                "Generate with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
            )

        value_lower = value.lower()
        for insecure in INSECURE_KEY_PATTERNS:
            if insecure in value_lower:
                raise ValueError(
                    f"{info.field_name} contains insecure pattern '{insecure}'. "
                    "Please generate a secure random key."
                )

        return value

    @field_validator("PLAID_ENVIRONMENT")
    @classmethod
    def _validate_plaid_environment(cls, value):
        normalized = (value or "").strip().lower()
        if normalized not in ("sandbox", "development", "production"):
            raise ValueError("PLAID_ENVIRONMENT must be one of: sandbox, development, production")
        return normalized

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def cookie_secure(self) -> bool:
        if self.COOKIE_SECURE is not None:
            return self.COOKIE_SECURE
        return self.is_production

    @property
    def is_plaid_configured(self) -> bool:
        """Check if Plaid credentials are present."""
        return bool(self.PLAID_CLIENT_ID and self.PLAID_SECRET)

    class Config:
        env_file = ".env"
        extra = "ignore"  # Ignore extra environment variables not defined in the model


settings = Settings()
