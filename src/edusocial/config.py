"""
Central configuration module for the EduSocial backend
Reads and validates environment variables with strict checks for production
"""
import os
import sys
from typing import Optional, List

# Load environment variables from .env file if it exists (dev only)
try:
    from dotenv import load_dotenv
    if os.getenv("ENV", "dev").lower() == "dev":
        load_dotenv()
except ImportError:
    pass


class Config:
    """Central configuration class with environment variable validation"""

    # Environment
    ENV: str = os.getenv("ENV", "dev").lower()

    # Required for all environments
    SECRET_KEY: str = os.getenv("SECRET_KEY", "")
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")

    # Optional but recommended
    REDIS_URL: Optional[str] = os.getenv("REDIS_URL")
    PORT: int = int(os.getenv("PORT", "8000"))

    # Database pool
    DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "20"))
    DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "10"))
    DB_POOL_RECYCLE: int = int(os.getenv("DB_POOL_RECYCLE", "900"))
    DB_POOL_TIMEOUT: int = int(os.getenv("DB_POOL_TIMEOUT", "30"))

    # CORS
    CORS_ORIGINS: List[str] = []

    # Payment provider - Stripe
    STRIPE_SECRET_KEY: Optional[str] = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET: Optional[str] = os.getenv("STRIPE_WEBHOOK_SECRET")
    STRIPE_TEST_SECRET_KEY: Optional[str] = os.getenv("STRIPE_TEST_SECRET_KEY")
    STRIPE_TEST_WEBHOOK_SECRET: Optional[str] = os.getenv("STRIPE_TEST_WEBHOOK_SECRET")

    # Checkout
    PAYMENT_SESSION_MODE: str = os.getenv("PAYMENT_SESSION_MODE", "checkout").lower()  # checkout | payment_intent
    CHECKOUT_SUCCESS_URL: str = os.getenv(
        "CHECKOUT_SUCCESS_URL",
        "http://localhost:3000/business/credits?payment=success&order_id={order_id}"
    )
    CHECKOUT_CANCEL_URL: str = os.getenv(
        "CHECKOUT_CANCEL_URL",
        "http://localhost:3000/business/credits?payment=cancelled&order_id={order_id}"
    )
    DEFAULT_PAYMENT_CURRENCY: str = os.getenv("DEFAULT_PAYMENT_CURRENCY", "usd").lower()
    CURRENCY_FALLBACK_POLICY: str = os.getenv("CURRENCY_FALLBACK_POLICY", "fallback").lower()  # fallback | reject
    PAYMENT_TIMEOUT_SECONDS: int = int(os.getenv("PAYMENT_TIMEOUT_SECONDS", "20"))
    PAYMENT_CONFIRM_MAX_ATTEMPTS: int = int(os.getenv("PAYMENT_CONFIRM_MAX_ATTEMPTS", "3"))

    # Invoices
    INVOICE_BASE_URL: str = os.getenv("INVOICE_BASE_URL", "http://localhost:8000/v1/invoices")
    INVOICE_DEFAULT_BUSINESS_NAME: str = os.getenv("INVOICE_DEFAULT_BUSINESS_NAME", "EduSocial Business")

    # Moderation service
    MODERATION_SERVICE_URL: Optional[str] = os.getenv("MODERATION_SERVICE_URL")
    MODERATION_API_KEY: Optional[str] = os.getenv("MODERATION_API_KEY")
    MODERATION_CALLBACK_SECRET: str = os.getenv("MODERATION_CALLBACK_SECRET", "")
    MODERATION_CALLBACK_URL: str = os.getenv(
        "MODERATION_CALLBACK_URL",
        "http://localhost:8000/v1/moderation/callback"
    )
    MODERATION_TIMEOUT_SECONDS: int = int(os.getenv("MODERATION_TIMEOUT_SECONDS", "10"))
    MODERATION_MAX_ATTEMPTS: int = int(os.getenv("MODERATION_MAX_ATTEMPTS", "5"))
    MODERATION_BACKOFF_SECONDS: int = int(os.getenv("MODERATION_BACKOFF_SECONDS", "30"))

    # Engagement batching
    SCHEDULER_SECRET: str = os.getenv("SCHEDULER_SECRET", "")
    ENGAGEMENT_FLUSH_INTERVAL_SECONDS: int = int(os.getenv("ENGAGEMENT_FLUSH_INTERVAL_SECONDS", "60"))
    ENGAGEMENT_FLUSH_BATCH_SIZE: int = int(os.getenv("ENGAGEMENT_FLUSH_BATCH_SIZE", "100"))
    ENGAGEMENT_LOCK_TTL_MS: int = int(os.getenv("ENGAGEMENT_LOCK_TTL_MS", "30000"))

    # Background jobs
    ENABLE_SCHEDULER: bool = os.getenv("ENABLE_SCHEDULER", "true").lower() == "true"

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    def __init__(self):
        """Initialize configuration and validate required variables"""
        self._load_cors_origins()
        self._validate()

    def _load_cors_origins(self):
        """Load CORS origins from environment variable"""
        default_origins = [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]

        cors_env = os.getenv("CORS_ORIGINS", "")
        if cors_env:
            env_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
            self.CORS_ORIGINS = default_origins + env_origins
        else:
            self.CORS_ORIGINS = default_origins

    def _validate(self):
        """Validate required configuration based on environment"""
        errors = []

        if self.ENV not in ["dev", "test", "staging", "prod"]:
            errors.append(f"Invalid ENV value: {self.ENV}. Must be 'dev', 'test', 'staging', or 'prod'")

        if not self.SECRET_KEY:
            errors.append("SECRET_KEY is required but not set")
        elif len(self.SECRET_KEY) < 32:
            errors.append(f"SECRET_KEY must be at least 32 characters (current: {len(self.SECRET_KEY)})")

        if not self.DATABASE_URL:
            errors.append("DATABASE_URL is required but not set")
        elif self.ENV in ["staging", "prod"] and not self.DATABASE_URL.startswith("postgresql"):
            errors.append(f"DATABASE_URL must be a PostgreSQL connection string in {self.ENV} (got: {self.DATABASE_URL[:30]}...)")

        if self.PAYMENT_SESSION_MODE not in ["checkout", "payment_intent"]:
            errors.append(f"Invalid PAYMENT_SESSION_MODE: {self.PAYMENT_SESSION_MODE}. Must be 'checkout' or 'payment_intent'")

        if self.CURRENCY_FALLBACK_POLICY not in ["fallback", "reject"]:
            errors.append(f"Invalid CURRENCY_FALLBACK_POLICY: {self.CURRENCY_FALLBACK_POLICY}. Must be 'fallback' or 'reject'")

        if self.MODERATION_MAX_ATTEMPTS < 1:
            errors.append("MODERATION_MAX_ATTEMPTS must be at least 1")

        if self.ENGAGEMENT_FLUSH_BATCH_SIZE < 1:
            errors.append("ENGAGEMENT_FLUSH_BATCH_SIZE must be at least 1")

        # Signed callbacks and the flush trigger need secrets outside dev/test
        if self.ENV in ["staging", "prod"]:
            stripe_key = self.STRIPE_SECRET_KEY if self.ENV == "prod" else self.STRIPE_TEST_SECRET_KEY
            stripe_webhook = self.STRIPE_WEBHOOK_SECRET if self.ENV == "prod" else self.STRIPE_TEST_WEBHOOK_SECRET
            prefix = "TEST_" if self.ENV == "staging" else ""
            if not stripe_key:
                errors.append(f"STRIPE_{prefix}SECRET_KEY is required in {self.ENV}")
            if not stripe_webhook:
                errors.append(f"STRIPE_{prefix}WEBHOOK_SECRET is required in {self.ENV}")
            if not self.MODERATION_CALLBACK_SECRET:
                errors.append(f"MODERATION_CALLBACK_SECRET is required in {self.ENV}")
            if not self.SCHEDULER_SECRET:
                errors.append(f"SCHEDULER_SECRET is required in {self.ENV}")
            if not self.REDIS_URL:
                errors.append(f"REDIS_URL is required in {self.ENV} (engagement buffer must be shared)")

        # Fail fast in staging/prod
        if errors and self.ENV in ["staging", "prod"]:
            print("=" * 60, file=sys.stderr)
            print("CONFIGURATION VALIDATION FAILED", file=sys.stderr)
            print("=" * 60, file=sys.stderr)
            for error in errors:
                print(f"  - {error}", file=sys.stderr)
            print("=" * 60, file=sys.stderr)
            sys.exit(1)

        if errors:
            print("=" * 60, file=sys.stderr)
            print(f"CONFIGURATION WARNINGS ({self.ENV} mode - continuing)", file=sys.stderr)
            print("=" * 60, file=sys.stderr)
            for error in errors:
                print(f"  - {error}", file=sys.stderr)
            print("=" * 60, file=sys.stderr)

    @property
    def is_dev(self) -> bool:
        """Check if running in development mode"""
        return self.ENV == "dev"

    @property
    def is_prod(self) -> bool:
        """Check if running in production mode"""
        return self.ENV == "prod"

    @property
    def is_staging(self) -> bool:
        """Check if running in staging mode"""
        return self.ENV == "staging"

    @property
    def stripe_secret_key(self) -> Optional[str]:
        """Stripe API key for the current environment (test keys outside prod)"""
        if self.ENV == "prod":
            return self.STRIPE_SECRET_KEY
        return self.STRIPE_TEST_SECRET_KEY or self.STRIPE_SECRET_KEY

    @property
    def stripe_webhook_secret(self) -> Optional[str]:
        """Stripe webhook signing secret for the current environment"""
        if self.ENV == "prod":
            return self.STRIPE_WEBHOOK_SECRET
        return self.STRIPE_TEST_WEBHOOK_SECRET or self.STRIPE_WEBHOOK_SECRET


# Create global config instance
config = Config()
