"""Billing and checkout configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional
import os

DEFAULT_TRIAL_DAYS = 14


@dataclass(frozen=True)
class BillingConfig:
    """Configuration for checkout previews and the payment gateway."""

    trial_days: int
    default_currency: str
    app_base_url: str
    stripe_secret_key: Optional[str]
    stripe_account: Optional[str]
    stripe_api_timeout: float
    stripe_max_network_retries: int

    @property
    def stripe_enabled(self) -> bool:
        return bool(self.stripe_secret_key)

    def callback_url(self, session_id: int) -> str:
        return f"{self.app_base_url}/api/checkout/{session_id}/callback"


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def load_billing_config(env: Optional[Mapping[str, str]] = None) -> BillingConfig:
    """Load :class:`BillingConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    trial_days = max(0, _to_int(env_mapping.get("CHECKOUT_TRIAL_DAYS"), default=DEFAULT_TRIAL_DAYS))
    default_currency = (env_mapping.get("CHECKOUT_DEFAULT_CURRENCY") or "usd").strip().lower() or "usd"
    app_base_url = env_mapping.get("APP_BASE_URL", "http://localhost:8000")

    stripe_secret_key = (env_mapping.get("STRIPE_SECRET_KEY") or "").strip() or None
    stripe_account = (env_mapping.get("STRIPE_ACCOUNT") or "").strip() or None
    stripe_api_timeout = max(1.0, _to_float(env_mapping.get("STRIPE_API_TIMEOUT"), default=30.0))
    stripe_max_network_retries = max(0, _to_int(env_mapping.get("STRIPE_MAX_NETWORK_RETRIES"), default=0))

    return BillingConfig(
        trial_days=trial_days,
        default_currency=default_currency,
        app_base_url=app_base_url.rstrip("/"),
        stripe_secret_key=stripe_secret_key,
        stripe_account=stripe_account,
        stripe_api_timeout=stripe_api_timeout,
        stripe_max_network_retries=stripe_max_network_retries,
    )


__all__ = ["BillingConfig", "DEFAULT_TRIAL_DAYS", "load_billing_config"]
