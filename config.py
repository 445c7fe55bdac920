import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOCAL_ENVIRONMENTS = ("development", "test")


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./booking.db"
    # unset APP_ENV means production; development and test must be explicit
    environment: str = "production"
    app_url: Optional[str] = None
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_currency: str = "eur"
    stripe_session_expires_after: int = 30 * 60
    resend_api_key: Optional[str] = None
    email_from: str = "info@royaltransfersbcn.com"
    email_from_name: str = "Royal Transfers BCN"
    email_admin: str = "admin@royaltransfersbcn.com"
    debug_api_key: Optional[str] = None
    log_level: str = "INFO"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def is_local(self) -> bool:
        return self.environment in LOCAL_ENVIRONMENTS


def load_settings() -> Settings:
    """
    Read settings from the environment (and a local .env file if present).
    Empty variables count as unset.
    """
    load_dotenv()

    def env(name, default=None):
        value = os.getenv(name)
        return value if value else default

    return Settings(
        database_url=env("DATABASE_URL", Settings.database_url),
        environment=env("APP_ENV", Settings.environment),
        app_url=env("APP_URL"),
        stripe_secret_key=env("STRIPE_SECRET_KEY"),
        stripe_webhook_secret=env("STRIPE_WEBHOOK_SECRET"),
        stripe_currency=env("STRIPE_CURRENCY", Settings.stripe_currency),
        stripe_session_expires_after=int(env("STRIPE_SESSION_EXPIRES_AFTER", Settings.stripe_session_expires_after)),
        resend_api_key=env("RESEND_API_KEY"),
        email_from=env("EMAIL_FROM", Settings.email_from),
        email_from_name=env("EMAIL_FROM_NAME", Settings.email_from_name),
        email_admin=env("EMAIL_ADMIN", Settings.email_admin),
        debug_api_key=env("DEBUG_API_KEY"),
        log_level=env("LOG_LEVEL", Settings.log_level),
    )


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if not any(getattr(h, "_booking_handler", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._booking_handler = True
        root.addHandler(handler)
    root.setLevel(level.upper())
