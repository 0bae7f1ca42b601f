"""
Process-wide configuration.
Built once from the environment at startup and handed to every component
that needs a secret or an endpoint; nothing below app.core reads os.environ.
"""
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List


class ConfigurationError(RuntimeError):
    """A required setting is missing; the process must not serve requests."""


def _normalize_database_url(url: str) -> str:
    # Normalize postgres:// -> postgresql:// for SQLAlchemy
    if url.startswith("postgres://"):
        return "postgresql://" + url[len("postgres://"):]
    return url


def _split_csv(raw: str) -> List[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./licenses.db"
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    resend_api_key: str = ""
    email_from: str = "SquarePro <no-reply@squarepro.co.uk>"
    otp_secret: str = ""
    admin_token: str = ""
    app_base_url: str = "http://localhost:3000"
    cors_origins: List[str] = field(default_factory=list)
    default_max_domains: int = 2
    otp_ttl_minutes: int = 10

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=_normalize_database_url(
                os.getenv("DATABASE_URL", "sqlite:///./licenses.db").strip()
            ),
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY", "").strip(),
            stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET", "").strip(),
            resend_api_key=os.getenv("RESEND_API_KEY", "").strip(),
            email_from=os.getenv("SMTP_FROM", "SquarePro <no-reply@squarepro.co.uk>"),
            otp_secret=os.getenv("OTP_SECRET", ""),
            admin_token=os.getenv("ADMIN_TOKEN", ""),
            app_base_url=os.getenv("APP_BASE_URL", "http://localhost:3000"),
            cors_origins=_split_csv(os.getenv("CORS_ORIGINS", "")),
            default_max_domains=int(os.getenv("DEFAULT_MAX_DOMAINS", "2")),
        )

    def validate(self) -> None:
        """Raise ConfigurationError naming every missing required value."""
        missing = []
        if not self.otp_secret:
            missing.append("OTP_SECRET")
        if not self.stripe_secret_key:
            missing.append("STRIPE_SECRET_KEY")
        if missing:
            raise ConfigurationError(
                "Missing required configuration: " + ", ".join(missing)
            )


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
