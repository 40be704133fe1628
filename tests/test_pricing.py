from decimal import Decimal

import pytest

from services.pricing import (
    apply_coupon,
    billing_period_for,
    cart_total_cents,
    contract_amounts,
    multi_pet_discount_percent,
    pet_price_cents,
    quote,
)


@pytest.mark.parametrize(
    "pets,expected",
    [(1, 10000), (2, 19500), (3, 28500), (4, 37000), (5, 45500)],
)
def test_basic_plan_multi_pet_discount_schedule(pets, expected):
    assert cart_total_cents("BASIC", "100.00", pets) == expected


def test_infinity_plan_gets_the_same_discounts():
    assert cart_total_cents("Plano INFINITY", Decimal("100.00"), 3) == 28500


def test_plans_without_discount_marker_multiply_by_pet_count():
    assert cart_total_cents("PREMIUM", "79.90", 3) == 3 * 7990


def test_annual_plans_multiply_by_twelve_without_multi_pet_discount():
    assert cart_total_cents("COMFORT", "50.00", 2) == 2 * 60000
    assert cart_total_cents("Platinum Plus", "120.00", 1) == 144000
    assert multi_pet_discount_percent("COMFORT", 2) == 0


def test_per_pet_price_rounds_to_nearest_cent():
    assert pet_price_cents("BASIC", "49.99", 0) == 4999
    assert pet_price_cents("BASIC", "49.99", 1) == 4749  # 4749.05
    assert pet_price_cents("BASIC", "49.99", 2) == 4499  # 4499.1
    assert pet_price_cents("BASIC", "49.99", 3) == 4249  # 4249.15


def test_empty_cart_counts_as_one_pet():
    assert cart_total_cents("BASIC", "100.00", 0) == 10000


def test_billing_period_follows_plan_name():
    assert billing_period_for("COMFORT") == "annual"
    assert billing_period_for("platinum") == "annual"
    assert billing_period_for("BASIC") == "monthly"


def test_percentage_coupon():
    assert apply_coupon(28500, "percentage", Decimal("10")) == 25650
    assert apply_coupon(999, "percentage", Decimal("12.5")) == 874


def test_fixed_coupon_is_floored_at_zero():
    assert apply_coupon(28500, "fixed_value", Decimal("50.00")) == 23500
    assert apply_coupon(28500, "fixed_value", Decimal("500.00")) == 0


def test_percentage_coupon_over_100_never_negative():
    assert apply_coupon(1000, "percentage", Decimal("150")) == 0


def test_quote_reports_discount_and_period():
    q = quote("BASIC", "100.00", 2, coupon_code="PROMO10", coupon_type="percentage", coupon_value=10)
    assert q.subtotal_cents == 19500
    assert q.total_cents == 17550
    assert q.discount_cents == 1950
    assert q.total_amount == Decimal("175.50")
    assert q.billing_period == "monthly"
    assert q.coupon_code == "PROMO10"


def test_quote_without_coupon():
    q = quote("COMFORT", "50.00", 1)
    assert q.total_cents == 60000
    assert q.coupon_code is None
    assert q.billing_period == "annual"


def test_contract_amounts_per_pet():
    assert contract_amounts("BASIC", "100.00", 1) == (Decimal("95.00"), None)
    assert contract_amounts("COMFORT", "50.00", 0) == (Decimal("0.00"), Decimal("600.00"))
