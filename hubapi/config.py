from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from functools import lru_cache
from typing import Dict, List


VALID_MODES = ("integrated", "standalone")


class Settings(BaseSettings):
    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Database - PostgreSQL for production, SQLite for development
    database_url: str = Field(
        default="sqlite:///./hub.db",
        alias="DATABASE_URL"
    )

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # CORS - Frontend URLs (comma-separated)
    allowed_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173,http://127.0.0.1:5173",
        alias="ALLOWED_ORIGINS"
    )

    # ==============================================
    # Brand operation modes
    # ==============================================
    # standalone is the safe default: the external adapter owns writes
    mode_cobnb: str = Field(default="standalone", alias="MODE_COBNB")
    mode_monthlykey: str = Field(default="standalone", alias="MODE_MONTHLYKEY")

    # Night bounds per brand (inclusive)
    cobnb_min_nights: int = Field(default=1, alias="COBNB_MIN_NIGHTS")
    cobnb_max_nights: int = Field(default=27, alias="COBNB_MAX_NIGHTS")
    monthlykey_min_nights: int = Field(default=28, alias="MONTHLYKEY_MIN_NIGHTS")
    monthlykey_max_nights: int = Field(default=365, alias="MONTHLYKEY_MAX_NIGHTS")

    # Monthly rate is spread over this many days to get a nightly price
    monthly_amortization_days: int = Field(default=30, alias="MONTHLY_AMORTIZATION_DAYS")

    # ==============================================
    # Feature flags (all off by default)
    # ==============================================
    enable_channel_sync: bool = Field(default=False, alias="ENABLE_CHANNEL_SYNC")
    enable_webhooks: bool = Field(default=False, alias="ENABLE_WEBHOOKS")
    enable_automated_tickets: bool = Field(default=False, alias="ENABLE_AUTOMATED_TICKETS")
    enable_payments: bool = Field(default=False, alias="ENABLE_PAYMENTS")

    # ==============================================
    # Channel manager (Server-Side Only!)
    # ==============================================
    channel_base_url: str = Field(default="", alias="CHANNEL_BASE_URL")
    channel_api_key: str = Field(default="", alias="CHANNEL_API_KEY")
    channel_timeout_seconds: float = Field(default=10.0, alias="CHANNEL_TIMEOUT_SECONDS")

    # ==============================================
    # Idempotency
    # ==============================================
    idempotency_ttl_hours: int = Field(default=24, alias="IDEMPOTENCY_TTL_HOURS")
    idempotency_key_min_length: int = Field(default=8, alias="IDEMPOTENCY_KEY_MIN_LENGTH")

    # ==============================================
    # Webhook retry schedule
    # ==============================================
    webhook_base_backoff_seconds: float = Field(default=30.0, alias="WEBHOOK_BASE_BACKOFF_SECONDS")
    webhook_jitter_max_seconds: float = Field(default=5.0, alias="WEBHOOK_JITTER_MAX_SECONDS")
    webhook_max_retries: int = Field(default=5, alias="WEBHOOK_MAX_RETRIES")
    # JSON object, e.g. {"booking.created": 8}
    webhook_max_retries_by_type: Dict[str, int] = Field(
        default_factory=dict,
        alias="WEBHOOK_MAX_RETRIES_BY_TYPE"
    )

    # Worker pool settings
    webhook_worker_concurrency: int = Field(default=5, alias="WEBHOOK_WORKER_CONCURRENCY")
    webhook_rate_limit_max: int = Field(default=10, alias="WEBHOOK_RATE_LIMIT_MAX")
    webhook_rate_limit_window_seconds: float = Field(default=1.0, alias="WEBHOOK_RATE_LIMIT_WINDOW_SECONDS")
    webhook_dispatch_timeout_seconds: float = Field(default=30.0, alias="WEBHOOK_DISPATCH_TIMEOUT_SECONDS")

    # Retry poller settings
    retry_poll_interval_seconds: int = Field(default=30, alias="RETRY_POLL_INTERVAL_SECONDS")
    retry_poll_batch_size: int = Field(default=100, alias="RETRY_POLL_BATCH_SIZE")
    webhook_pending_grace_seconds: int = Field(default=60, alias="WEBHOOK_PENDING_GRACE_SECONDS")
    webhook_processing_lease_seconds: int = Field(default=300, alias="WEBHOOK_PROCESSING_LEASE_SECONDS")

    # Worker settings (runs inside FastAPI process unless a separate worker.py is deployed)
    run_worker_in_process: bool = Field(default=True, alias="RUN_WORKER_IN_PROCESS")

    # HTTP rate limiting
    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    redis_url: str = Field(default="", alias="REDIS_URL")

    @field_validator("database_url")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Hosting providers hand out postgres:// but SQLAlchemy needs postgresql://"""
        if v.startswith("postgres://"):
            return v.replace("postgres://", "postgresql://", 1)
        return v

    @field_validator("mode_cobnb", "mode_monthlykey")
    @classmethod
    def validate_mode(cls, v: str) -> str:
        """Reject unknown operation modes at startup"""
        mode = v.strip().lower()
        if mode not in VALID_MODES:
            raise ValueError(f"mode must be one of {VALID_MODES}, got {v!r}")
        return mode

    @field_validator("idempotency_key_min_length", "webhook_max_retries", "webhook_worker_concurrency")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def cors_origins(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        origins = []
        for origin in self.allowed_origins.split(","):
            origin = origin.strip().rstrip("/")
            if origin and origin not in origins:
                origins.append(origin)
        return origins or ["http://localhost:5173"]

    def max_retries_for(self, event_type: str) -> int:
        """Retry budget for an event type, falling back to the default"""
        return self.webhook_max_retries_by_type.get(event_type, self.webhook_max_retries)

    def feature_flags(self) -> Dict[str, bool]:
        return {
            "channel_sync": self.enable_channel_sync,
            "webhooks": self.enable_webhooks,
            "automated_tickets": self.enable_automated_tickets,
            "payments": self.enable_payments,
        }

    class Config:
        env_file = ".env"
        extra = "ignore"
        populate_by_name = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
