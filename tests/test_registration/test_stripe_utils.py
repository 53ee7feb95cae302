"""Tests for Stripe amount and key helpers in django_ticketing.registration.stripe_utils."""

from decimal import Decimal

import pytest

from django_ticketing.registration.stripe_utils import from_stripe_amount, mask_key, to_stripe_amount


@pytest.mark.unit
class TestToStripeAmount:
    def test_usd_converts_to_cents(self):
        assert to_stripe_amount(Decimal("25.00"), "USD") == 2500

    def test_lowercase_currency(self):
        assert to_stripe_amount(Decimal("9.99"), "usd") == 999

    def test_half_cent_rounds_up(self):
        assert to_stripe_amount(Decimal("19.995"), "USD") == 2000

    def test_zero_decimal_currency(self):
        assert to_stripe_amount(Decimal("1500"), "JPY") == 1500


@pytest.mark.unit
class TestFromStripeAmount:
    def test_cents_to_decimal(self):
        assert from_stripe_amount(2500, "USD") == Decimal("25.00")

    def test_zero_decimal_currency(self):
        assert from_stripe_amount(1500, "jpy") == Decimal("1500.00")


@pytest.mark.unit
class TestMaskKey:
    def test_keeps_last_four(self):
        assert mask_key("sk_test_abcdef1234") == "****1234"

    def test_short_key_fully_masked(self):
        assert mask_key("abc") == "****"
