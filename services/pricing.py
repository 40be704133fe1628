"""Precificação do checkout em centavos inteiros.

Regras por nome do plano:
- COMFORT / PLATINUM: cobrança anual (preço mensal x 12), sem desconto multi-pet.
- BASIC / INFINITY: desconto progressivo a partir do 2º pet (5%, 10%, 15%).
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

ANNUAL_PLAN_MARKERS = ("COMFORT", "PLATINUM")
MULTI_PET_DISCOUNT_MARKERS = ("BASIC", "INFINITY")
# indice do pet (0 = primeiro) -> desconto %
MULTI_PET_DISCOUNTS = (0, 5, 10, 15)

COUPON_PERCENTAGE = "percentage"
COUPON_FIXED_VALUE = "fixed_value"


def _round(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _has_marker(plan_name: str | None, markers: tuple[str, ...]) -> bool:
    name = (plan_name or "").upper()
    return any(m in name for m in markers)


def is_annual_plan(plan_name: str | None) -> bool:
    return _has_marker(plan_name, ANNUAL_PLAN_MARKERS)


def billing_period_for(plan_name: str | None) -> str:
    return "annual" if is_annual_plan(plan_name) else "monthly"


def multi_pet_discount_percent(plan_name: str | None, pet_index: int) -> int:
    if pet_index <= 0 or not _has_marker(plan_name, MULTI_PET_DISCOUNT_MARKERS):
        return 0
    return MULTI_PET_DISCOUNTS[min(pet_index, len(MULTI_PET_DISCOUNTS) - 1)]


def to_cents(value) -> int:
    return _round(Decimal(str(value)) * 100)


def from_cents(cents: int) -> Decimal:
    return (Decimal(int(cents)) / 100).quantize(Decimal("0.01"))


def plan_base_cents(plan_name: str | None, base_price) -> int:
    """Preço cobrado por pet antes de descontos."""
    cents = to_cents(base_price)
    if is_annual_plan(plan_name):
        cents *= 12
    return cents


def pet_price_cents(plan_name: str | None, base_price, pet_index: int) -> int:
    base = plan_base_cents(plan_name, base_price)
    pct = multi_pet_discount_percent(plan_name, pet_index)
    if not pct:
        return base
    return _round(Decimal(base) * (100 - pct) / 100)


def cart_total_cents(plan_name: str | None, base_price, pet_count: int) -> int:
    count = max(int(pet_count or 0), 1)
    return sum(pet_price_cents(plan_name, base_price, i) for i in range(count))


def apply_coupon(total_cents: int, coupon_type: str, coupon_value) -> int:
    """Retorna o total após o cupom (nunca negativo)."""
    value = Decimal(str(coupon_value or 0))
    if coupon_type == COUPON_PERCENTAGE:
        discount = _round(Decimal(total_cents) * value / 100)
    elif coupon_type == COUPON_FIXED_VALUE:
        discount = _round(value * 100)
    else:
        return total_cents
    return max(0, total_cents - discount)


def contract_amounts(plan_name: str | None, base_price, pet_index: int) -> tuple[Decimal, Decimal | None]:
    """(valor mensal, valor anual) gravados no contrato de um pet."""
    if is_annual_plan(plan_name):
        return Decimal("0.00"), from_cents(plan_base_cents(plan_name, base_price))
    return from_cents(pet_price_cents(plan_name, base_price, pet_index)), None


@dataclass
class PriceQuote:
    plan_name: str
    pet_count: int
    subtotal_cents: int
    total_cents: int
    billing_period: str
    coupon_code: str | None = None

    @property
    def discount_cents(self) -> int:
        return self.subtotal_cents - self.total_cents

    @property
    def total_amount(self) -> Decimal:
        return from_cents(self.total_cents)


def quote(
    plan_name: str,
    base_price,
    pet_count: int,
    *,
    coupon_code: str | None = None,
    coupon_type: str | None = None,
    coupon_value=None,
) -> PriceQuote:
    subtotal = cart_total_cents(plan_name, base_price, pet_count)
    total = subtotal
    if coupon_code and coupon_type:
        total = apply_coupon(subtotal, coupon_type, coupon_value)
    return PriceQuote(
        plan_name=plan_name,
        pet_count=max(int(pet_count or 0), 1),
        subtotal_cents=subtotal,
        total_cents=total,
        billing_period=billing_period_for(plan_name),
        coupon_code=coupon_code if coupon_type else None,
    )
