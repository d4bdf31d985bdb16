"""Application configuration using pydantic-settings."""

from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All required database and provider parameters must be provided via
    environment variables or a .env file. Missing required parameters will
    raise a ValidationError at application startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra environment variables
    )

    # Database - Required
    POSTGRES_HOST: str
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str
    POSTGRES_PASSWORD: str
    POSTGRES_DB: str
    # Full SQLAlchemy URL; overrides the POSTGRES_* parts when set
    DATABASE_URL: str | None = None

    # Redis - Optional with defaults
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379

    # Application
    SECRET_KEY: str
    DEBUG: bool = False
    CURRENCY: str = "NGN"

    # Payment provider - Required secret
    PROVIDER_SECRET_KEY: str
    PROVIDER_WEBHOOK_SECRET: str | None = None
    PROVIDER_BASE_URL: str = "https://api.paystack.co"
    PROVIDER_NAME: str = "Paystack"
    PROVIDER_TIMEOUT_SECONDS: float = 15.0
    PROVIDER_MAX_CONCURRENCY: int = 5
    PROVIDER_MIN_INTERVAL_SECONDS: float = 1.0
    DEDICATED_ACCOUNT_BANKS: list[str] = ["wema-bank", "titan-paystack"]

    # Retry policy
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 2.0
    RETRY_MAX_DELAY_SECONDS: float = 30.0
    PAYOUT_RETRY_GRACE_SECONDS: int = 300

    # Wallet rules
    MIN_FUNDING_AMOUNT: Decimal = Decimal("100")
    MIN_WITHDRAWAL_AMOUNT: Decimal = Decimal("100")
    PENDING_TIMEOUT_HOURS: int = 24
    CLEANUP_TIMEOUT_DAYS: int = 7
    LOW_TRANSFER_BALANCE_THRESHOLD: Decimal = Decimal("1000")

    # Scheduled job cadence
    SYNC_INTERVAL_MINUTES: int = 30
    RECONCILE_INTERVAL_HOURS: int = 6
    RETRY_INTERVAL_HOURS: int = 5
    SETTLE_INTERVAL_HOURS: int = 2

    @property
    def database_url(self) -> str:
        """Construct async PostgreSQL database URL with asyncpg driver."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def redis_url(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/0"

    @property
    def celery_broker_url(self) -> str:
        """Construct Celery broker URL using Redis settings."""
        return self.redis_url

    @property
    def celery_result_backend(self) -> str:
        """Construct Celery result backend URL using Redis settings."""
        return self.redis_url

    @property
    def webhook_secret(self) -> str:
        """Secret used to sign inbound webhooks.

        The provider signs webhooks with the account secret key unless a
        dedicated webhook secret is configured.
        """
        return self.PROVIDER_WEBHOOK_SECRET or self.PROVIDER_SECRET_KEY


# Singleton settings instance - lazily loaded
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the application settings singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
