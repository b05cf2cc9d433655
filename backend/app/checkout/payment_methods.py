"""Payment method tables and the filters applied when preparing an intent."""
from __future__ import annotations

from typing import Iterable, List, Mapping, Optional, Sequence

from ..billing.models import IntentMode

DEFAULT_PAYMENT_METHODS = ("card",)

# Cannot be saved for a deferred or recurring charge.
DEFERRED_INCOMPATIBLE_METHODS = frozenset(
    {
        "klarna",
        "afterpay_clearpay",
        "affirm",
        "zip",
        "alipay",
        "wechat_pay",
        "oxxo",
        "boleto",
        "konbini",
        "paynow",
        "promptpay",
    }
)

# Require a full-page redirect to the provider.
REDIRECT_METHODS = frozenset(
    {
        "klarna",
        "afterpay_clearpay",
        "affirm",
        "ideal",
        "sofort",
        "bancontact",
        "giropay",
        "eps",
        "p24",
        "alipay",
        "wechat_pay",
        "fpx",
        "grabpay",
        "oxxo",
        "boleto",
        "konbini",
        "paynow",
        "promptpay",
        "zip",
        "swish",
        "twint",
        "mb_way",
        "multibanco",
        "blik",
        "mobilepay",
        "vipps",
        "satispay",
    }
)

WALLET_METHODS = frozenset({"apple_pay", "google_pay"})

# Maximum order amount in minor units, per method and currency.
PAYMENT_METHOD_LIMITS: Mapping[str, Mapping[str, int]] = {
    "afterpay_clearpay": {
        "usd": 200000,
        "cad": 250000,
        "aud": 300000,
        "nzd": 300000,
        "gbp": 150000,
        "eur": 180000,
    },
    "affirm": {
        "usd": 175000,
        "cad": 200000,
    },
    "klarna": {
        "usd": 100000,
        "eur": 100000,
        "gbp": 80000,
        "aud": 150000,
        "cad": 120000,
        "chf": 100000,
        "czk": 2500000,
        "dkk": 750000,
        "nok": 1000000,
        "nzd": 150000,
        "pln": 4000000,
        "ron": 5000000,
        "sek": 1000000,
    },
    "zip": {
        "usd": 100000,
        "aud": 150000,
    },
}


def payment_method_limit(method: str, currency: str) -> Optional[int]:
    return PAYMENT_METHOD_LIMITS.get(method, {}).get(currency.lower())


def methods_with_limits() -> List[str]:
    return list(PAYMENT_METHOD_LIMITS)


def is_method_available_for_amount(method: str, amount: int, currency: str) -> bool:
    """Methods or currencies without a ceiling are always available."""

    limit = payment_method_limit(method, currency)
    return limit is None or amount <= limit


def filter_by_amount(methods: Iterable[str], amount: int, currency: str) -> List[str]:
    return [method for method in methods if is_method_available_for_amount(method, amount, currency)]


def filter_payment_methods(
    methods: Optional[Sequence[str]],
    *,
    mode: IntentMode,
    amount: int,
    currency: str,
) -> List[str]:
    """Narrow the session's enabled methods to those usable for this intent.

    Setup intents drop methods that cannot be charged later. Payment intents drop
    methods whose ceiling is below ``amount``. An empty result falls back to card.
    """

    candidates: List[str] = []
    for method in methods or DEFAULT_PAYMENT_METHODS:
        if method and method not in candidates:
            candidates.append(method)

    if mode == IntentMode.SETUP:
        allowed = [method for method in candidates if method not in DEFERRED_INCOMPATIBLE_METHODS]
    else:
        allowed = filter_by_amount(candidates, amount, currency)

    return allowed or list(DEFAULT_PAYMENT_METHODS)


def is_redirect_method(method: Optional[str]) -> bool:
    return bool(method) and method in REDIRECT_METHODS


def without_wallets(methods: Iterable[str]) -> List[str]:
    """Wallets ride on card and are not sent to the gateway as separate types."""

    return [method for method in methods if method not in WALLET_METHODS]


__all__ = [
    "DEFAULT_PAYMENT_METHODS",
    "DEFERRED_INCOMPATIBLE_METHODS",
    "PAYMENT_METHOD_LIMITS",
    "REDIRECT_METHODS",
    "WALLET_METHODS",
    "filter_by_amount",
    "filter_payment_methods",
    "is_method_available_for_amount",
    "is_redirect_method",
    "methods_with_limits",
    "payment_method_limit",
    "without_wallets",
]
