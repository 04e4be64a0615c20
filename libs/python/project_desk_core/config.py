"""Configuration models for the payment gateway and receipt mailer."""

from __future__ import annotations

import os
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

DEFAULT_PAYSTACK_BASE_URL = "https://api.paystack.co"
DEFAULT_RESEND_BASE_URL = "https://api.resend.com"
DEFAULT_APP_URL = "http://localhost:3000"
DEFAULT_FROM_EMAIL = "Project Desk <onboarding@resend.dev>"


class GatewayConfig(BaseModel):
    """Paystack credentials and transport settings."""

    secret_key: str = Field(..., min_length=1)
    base_url: str = DEFAULT_PAYSTACK_BASE_URL
    timeout_seconds: float = Field(15.0, gt=0)
    callback_url: str = Field(..., description="Where the gateway sends the customer after checkout")

    class Config:
        frozen = True


class MailConfig(BaseModel):
    """Receipt delivery settings; a missing API key disables sending."""

    api_key: Optional[str] = None
    from_email: str = DEFAULT_FROM_EMAIL
    base_url: str = DEFAULT_RESEND_BASE_URL
    timeout_seconds: float = Field(10.0, gt=0)

    class Config:
        frozen = True

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)


def _read_env(key: str, default: Any | None = None) -> Any:
    value = os.getenv(key)
    if value is None or not value.strip():
        return default
    return value.strip()


def _parse_timeout(key: str, default: float, model: type[BaseModel]) -> float:
    raw = _read_env(key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as exc:  # pragma: no cover - environment misconfiguration
        raise ValidationError.from_exception_data(
            model.__name__,
            [
                {
                    "type": "float_parsing",
                    "loc": ("timeout_seconds",),
                    "input": raw,
                }
            ],
        ) from exc


def load_gateway_config() -> GatewayConfig:
    """Load Paystack settings from the environment.

    Environment variables used:
        PAYSTACK_SECRET_KEY
        PAYSTACK_BASE_URL (optional)
        PAYSTACK_TIMEOUT (optional, seconds)
        PROJECT_DESK_APP_URL (optional, used to build the callback URL)

    Raises:
        ValidationError: If the secret key is missing or a value is invalid.
    """

    app_url = str(_read_env("PROJECT_DESK_APP_URL", DEFAULT_APP_URL)).rstrip("/")
    return GatewayConfig(
        secret_key=_read_env("PAYSTACK_SECRET_KEY", ""),
        base_url=str(_read_env("PAYSTACK_BASE_URL", DEFAULT_PAYSTACK_BASE_URL)).rstrip("/"),
        timeout_seconds=_parse_timeout("PAYSTACK_TIMEOUT", 15.0, GatewayConfig),
        callback_url=f"{app_url}/payment/callback",
    )


def load_mail_config() -> MailConfig:
    """Load Resend settings; never raises for a missing key."""

    return MailConfig(
        api_key=_read_env("RESEND_API_KEY"),
        from_email=_read_env("RESEND_FROM_EMAIL", DEFAULT_FROM_EMAIL),
        base_url=str(_read_env("RESEND_BASE_URL", DEFAULT_RESEND_BASE_URL)).rstrip("/"),
    )
