from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "TicketBridge API"
    # Comma-separated origins for CORS. If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""

    # Only used to verify bearer tokens issued by the admin/customer auth service
    SECRET_KEY: str = "change-me"

    DATABASE_URL: str = "sqlite:///./ticketbridge.db"

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Ticketing provider (bearer auth)
    TICKETING_BASE_URL: str = "https://api.xs2event.com"
    TICKETING_API_KEY: str = ""
    TICKETING_TIMEOUT: int = 30
    TICKETING_STATUS_TIMEOUT: int = 15
    TICKETING_DOWNLOAD_TIMEOUT: int = 45
    TICKETING_ZIP_TIMEOUT: int = 60  # zip packaging is the slowest call
    ETICKET_CHECK_TTL_SECONDS: int = 300

    # Cybersource (HTTP Signature / REST refunds)
    CYBS_ENV: str = "test"  # test|prod
    CYBS_HOST: str = "apitest.cybersource.com"
    CYBS_MERCHANT_ID: str = ""
    CYBS_KEY_ID: str = ""
    CYBS_SECRET_KEY_B64: str = ""
    CYBS_TIMEOUT: int = 25
    CYBS_WEBHOOK_VERIFY: bool = False
    CYBS_WEBHOOK_PATH: str = ""  # If set, use this path for webhook signature verification
    REFUND_CURRENCY: str = "EUR"
    REFUND_PROCESSING_FEE: float = 0.0

    # Cancellation policy tiers; do not change without product sign-off
    CANCEL_FULL_REFUND_DAYS: int = 30
    CANCEL_PARTIAL_REFUND_DAYS: int = 15
    CANCEL_PARTIAL_REFUND_PERCENT: int = 50

    # Enforced by the worker, not by the orchestrator
    SYNC_MAX_ATTEMPTS: int = 3


settings = Settings()
