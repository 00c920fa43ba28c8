"""
Configuration settings for the Course Payment server.
"""
import os
from pathlib import Path
from typing import List, Mapping, Optional


def _normalize_base_path(value: str) -> str:
    """Turn '/embedded-course/', 'embedded-course' or '/' into a router prefix."""
    value = (value or "").strip().strip("/")
    return f"/{value}" if value else ""


class Settings:
    """Application settings and configuration.

    Built once at process start and handed to ``create_app``; nothing in the
    application reads provider credentials from the environment directly.
    """

    # API Configuration
    APP_TITLE: str = "Course Payment Server"
    APP_DESCRIPTION: str = "Course sales page with Stripe and PayPal checkout"
    VERSION: str = "1.0.0"

    # CORS Settings
    ALLOWED_ORIGINS: List[str] = ["*"]
    ALLOW_CREDENTIALS: bool = False
    ALLOWED_METHODS: List[str] = ["*"]
    ALLOWED_HEADERS: List[str] = ["*"]

    # Payment Configuration
    DEFAULT_CURRENCY: str = "usd"
    PROVIDER_TIMEOUT: int = 15
    STRIPE_WEBHOOK_TOLERANCE: int = 300
    SUPPORTED_PROVIDERS: List[str] = ["stripe", "paypal"]

    # Database Configuration
    DATABASE_NAME: str = "course_pay_db"
    COLLECTION_NAME: str = "processed_payments"
    MONGODB_TIMEOUT_MS: int = 5000

    STATIC_DIR: Path = Path(__file__).parent / "static"

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        env = os.environ if environ is None else environ

        self.host = env.get("HOST", "0.0.0.0")
        self.port = int(env.get("PORT", "3000"))
        self.reload = env.get("RELOAD", "false").lower() in ("1", "true", "yes")
        self.log_level = env.get("LOG_LEVEL", "INFO")
        self.base_path = _normalize_base_path(env.get("BASE_PATH", ""))
        self.course_name = env.get("COURSE_NAME", "Online Course")

        enabled = env.get("ENABLED_PROVIDERS", ",".join(self.SUPPORTED_PROVIDERS))
        self.enabled_providers = [
            name.strip().lower() for name in enabled.split(",") if name.strip()
        ]
        unknown = set(self.enabled_providers) - set(self.SUPPORTED_PROVIDERS)
        if unknown:
            raise ValueError(f"Unknown payment provider(s) in ENABLED_PROVIDERS: {', '.join(sorted(unknown))}")

        # Stripe
        self.stripe_secret_key = env.get("STRIPE_SECRET_KEY")
        self.stripe_webhook_secret = env.get("STRIPE_WEBHOOK_SECRET")

        # PayPal
        self.paypal_client_id = env.get("PAYPAL_CLIENT_ID")
        self.paypal_client_secret = env.get("PAYPAL_CLIENT_SECRET")
        self.paypal_webhook_id = env.get("PAYPAL_WEBHOOK_ID")
        self.paypal_environment = env.get("PAYPAL_ENVIRONMENT", "sandbox")  # sandbox or live

        self.mongodb_url = env.get("MONGODB_URL", "mongodb://localhost:27017")

        static_dir = env.get("STATIC_DIR")
        self.static_dir = Path(static_dir) if static_dir else self.STATIC_DIR

    @property
    def health_base_path(self) -> str:
        """Base path as reported by the health probe."""
        return self.base_path or "local"

    @property
    def paypal_api_base_url(self) -> str:
        """PayPal REST API root for the configured environment."""
        if self.paypal_environment == "live":
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"

    def provider_enabled(self, name: str) -> bool:
        return name in self.enabled_providers
