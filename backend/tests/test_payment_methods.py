from __future__ import annotations

from backend.app.billing import IntentMode
from backend.app.checkout.payment_methods import (
    filter_payment_methods,
    is_method_available_for_amount,
    is_redirect_method,
    methods_with_limits,
    payment_method_limit,
    without_wallets,
)


def test_amount_ceiling_excludes_afterpay_but_keeps_card():
    methods = filter_payment_methods(
        ["card", "afterpay_clearpay"], mode=IntentMode.PAYMENT, amount=250000, currency="usd"
    )
    assert methods == ["card"]


def test_amount_within_ceiling_keeps_afterpay():
    methods = filter_payment_methods(
        ["card", "afterpay_clearpay"], mode=IntentMode.PAYMENT, amount=50000, currency="usd"
    )
    assert methods == ["card", "afterpay_clearpay"]


def test_ceiling_is_inclusive():
    assert is_method_available_for_amount("afterpay_clearpay", 200000, "usd")
    assert not is_method_available_for_amount("afterpay_clearpay", 200001, "usd")


def test_methods_without_ceiling_are_never_excluded():
    assert is_method_available_for_amount("card", 10**9, "usd")
    # affirm has no ceiling for eur
    assert is_method_available_for_amount("affirm", 10**9, "eur")
    assert payment_method_limit("affirm", "eur") is None
    assert payment_method_limit("klarna", "SEK") == 1000000


def test_setup_mode_drops_deferred_incompatible_methods():
    methods = filter_payment_methods(
        ["card", "klarna", "sepa_debit", "alipay"], mode=IntentMode.SETUP, amount=0, currency="eur"
    )
    assert methods == ["card", "sepa_debit"]


def test_empty_result_falls_back_to_card():
    assert filter_payment_methods(["klarna"], mode=IntentMode.SETUP, amount=0, currency="usd") == ["card"]
    assert filter_payment_methods(["zip"], mode=IntentMode.PAYMENT, amount=500000, currency="usd") == ["card"]
    assert filter_payment_methods(None, mode=IntentMode.PAYMENT, amount=100, currency="usd") == ["card"]
    assert filter_payment_methods([], mode=IntentMode.PAYMENT, amount=100, currency="usd") == ["card"]


def test_duplicates_are_removed():
    methods = filter_payment_methods(["card", "card", "ideal"], mode=IntentMode.PAYMENT, amount=100, currency="eur")
    assert methods == ["card", "ideal"]


def test_redirect_methods():
    assert is_redirect_method("klarna")
    assert is_redirect_method("ideal")
    assert not is_redirect_method("card")
    assert not is_redirect_method(None)


def test_wallets_are_removed():
    assert without_wallets(["card", "apple_pay", "google_pay", "link"]) == ["card", "link"]


def test_methods_with_limits():
    assert set(methods_with_limits()) == {"afterpay_clearpay", "affirm", "klarna", "zip"}
