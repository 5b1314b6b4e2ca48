import os
from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")


class Settings:
    def __init__(self):
        self.app_env = os.getenv("APP_ENV", "development")
        self.app_url = os.getenv("APP_URL", "http://localhost:3000").rstrip("/")
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()

        self.jwt_secret = os.getenv("JWT_SECRET", "")

        self.paypal_client_id = os.getenv("PAYPAL_CLIENT_ID", "")
        self.paypal_client_secret = os.getenv("PAYPAL_CLIENT_SECRET", "")
        self.paypal_mode = os.getenv("PAYPAL_MODE", "sandbox")
        self.paypal_webhook_id = os.getenv("PAYPAL_WEBHOOK_ID") or None
        self.brand_name = os.getenv("BRAND_NAME", "Agency")

        # absolute tolerance when comparing captured amounts, in dollars
        self.amount_tolerance = Decimal(os.getenv("AMOUNT_TOLERANCE", "0.02"))

        self.email_backend = os.getenv("EMAIL_BACKEND", "console")
        self.smtp_host = os.getenv("SMTP_HOST", "smtp.hostinger.com")
        self.smtp_port = int(os.getenv("SMTP_PORT", "465"))
        self.smtp_user = os.getenv("SMTP_USER", "")
        self.smtp_password = os.getenv("SMTP_PASSWORD", "")
        self.email_from = os.getenv("EMAIL_FROM", '"Agency" <noreply@agency.com>')
        # inbox for contact-form messages; falls back to SMTP_USER
        self.contact_email = os.getenv("CONTACT_EMAIL") or self.smtp_user or None

        self.redis_url = os.getenv("REDIS_URL") or None
        self.rate_limit_max = int(os.getenv("RATE_LIMIT_MAX", "30"))
        self.rate_limit_window_seconds = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "600"))

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"

    @property
    def paypal_api_url(self) -> str:
        if self.paypal_mode == "live":
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
