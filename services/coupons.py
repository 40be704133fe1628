from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import update

from models.coupon_model import Coupon
from models.extensions import db
from services.pricing import COUPON_FIXED_VALUE, COUPON_PERCENTAGE

logger = logging.getLogger(__name__)

COUPON_TYPES = {COUPON_PERCENTAGE, COUPON_FIXED_VALUE}


@dataclass
class CouponValidation:
    valid: bool
    message: str | None = None
    code: str | None = None
    type: str | None = None
    value: Decimal | None = None


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def validate_coupon(code: str | None, *, now: datetime | None = None) -> CouponValidation:
    normalized = normalize_code(code)
    if not normalized:
        return CouponValidation(False, "Cupom não informado")

    coupon = Coupon.query.filter_by(code=normalized).first()
    if not coupon:
        return CouponValidation(False, "Cupom não encontrado")
    if not coupon.is_active:
        return CouponValidation(False, "Cupom inativo")
    if coupon.type not in COUPON_TYPES:
        logger.warning("Cupom %s com tipo desconhecido: %s", normalized, coupon.type)
        return CouponValidation(False, "Cupom inválido")

    now = now or datetime.utcnow()
    if coupon.valid_from and now < coupon.valid_from:
        return CouponValidation(False, "Cupom ainda não está válido")
    if coupon.valid_until and now > coupon.valid_until:
        return CouponValidation(False, "Cupom expirado")
    if coupon.usage_limit is not None and (coupon.usage_count or 0) >= coupon.usage_limit:
        return CouponValidation(False, "Cupom atingiu o limite de uso")

    return CouponValidation(
        True,
        code=coupon.code,
        type=coupon.type,
        value=Decimal(str(coupon.value)),
    )


def increment_coupon_usage(code: str | None) -> bool:
    """Incrementa o uso dentro da transação corrente (sem commit)."""
    normalized = normalize_code(code)
    if not normalized:
        return False
    result = db.session.execute(
        update(Coupon)
        .where(Coupon.code == normalized)
        .values(usage_count=Coupon.usage_count + 1, updated_at=datetime.utcnow())
    )
    return (result.rowcount or 0) > 0
