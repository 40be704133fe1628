from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import update

from models.extensions import db
from models.pending_payment_model import PendingPayment


@dataclass
class PendingPaymentData:
    """Dados coletados no checkout para gravar a tentativa de pagamento."""

    cielo_payment_id: str
    payment_method: str
    payment_status: str
    customer_name: str
    customer_email: str
    plan_id: int
    billing_period: str
    total_amount: Decimal
    pets: list[dict[str, Any]]
    customer_cpf: str | None = None
    customer_phone: str | None = None
    address: dict[str, str] = field(default_factory=dict)
    pix_qr_code: str | None = None
    pix_code: str | None = None
    seller_id: str | None = None
    coupon_code: str | None = None
    coupon_discount_amount: Decimal | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    expires_at: datetime | None = None


_ADDRESS_FIELDS = ("address", "number", "complement", "district", "city", "state", "cep")


def create_pending_payment(data: PendingPaymentData, *, commit: bool = True) -> PendingPayment:
    m = PendingPayment(
        cielo_payment_id=data.cielo_payment_id,
        payment_method=data.payment_method,
        payment_status=data.payment_status,
        customer_name=data.customer_name,
        customer_email=data.customer_email,
        customer_cpf=data.customer_cpf,
        customer_phone=data.customer_phone,
        plan_id=data.plan_id,
        billing_period=data.billing_period,
        total_amount=data.total_amount,
        pets_data=json.dumps(data.pets, ensure_ascii=False),
        pix_qr_code=data.pix_qr_code,
        pix_code=data.pix_code,
        seller_id=data.seller_id,
        coupon_code=data.coupon_code,
        coupon_discount_amount=data.coupon_discount_amount,
        metadata_json=json.dumps(data.metadata, ensure_ascii=False, default=str),
        processed=False,
        expires_at=data.expires_at,
    )
    for key in _ADDRESS_FIELDS:
        setattr(m, key, (data.address or {}).get(key) or None)
    db.session.add(m)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return m


def pix_expiration(now: datetime | None = None, hours: int = 24) -> datetime:
    return (now or datetime.utcnow()) + timedelta(hours=hours)


def get_pending_payment(pending_id: int) -> PendingPayment | None:
    if not pending_id:
        return None
    return db.session.get(PendingPayment, pending_id)


def get_by_gateway_payment_id(payment_id: str | None) -> PendingPayment | None:
    if not payment_id:
        return None
    return PendingPayment.query.filter_by(cielo_payment_id=payment_id).first()


def list_unprocessed(limit: int = 100) -> list[PendingPayment]:
    query = PendingPayment.query.filter(PendingPayment.processed.is_(False)).order_by(
        PendingPayment.created_at.asc()
    )
    if limit:
        query = query.limit(limit)
    return query.all()


def update_status(pending: PendingPayment, status: str, *, commit: bool = True) -> None:
    if pending.payment_status == status:
        return
    pending.payment_status = status
    if commit:
        db.session.commit()


def is_expired(pending: PendingPayment, now: datetime | None = None) -> bool:
    if not pending.expires_at:
        return False
    return (now or datetime.utcnow()) > pending.expires_at


def claim_for_processing(pending_id: int, now: datetime | None = None) -> bool:
    """Marca como processado só se ainda não estiver (check-and-set atômico).

    Executa na transação corrente; quem chama faz commit ou rollback junto
    com o restante da materialização.
    """
    result = db.session.execute(
        update(PendingPayment)
        .where(PendingPayment.id == pending_id, PendingPayment.processed.is_(False))
        .values(processed=True, processed_at=now or datetime.utcnow())
    )
    return (result.rowcount or 0) == 1


def pets_of(pending: PendingPayment) -> list[dict[str, Any]]:
    try:
        data = json.loads(pending.pets_data or "[]")
    except ValueError:
        return []
    return [p for p in data if isinstance(p, dict)] if isinstance(data, list) else []


def metadata_of(pending: PendingPayment) -> dict[str, Any]:
    try:
        data = json.loads(pending.metadata_json or "{}")
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def to_summary(pending: PendingPayment) -> dict[str, Any]:
    """Visão pública usada pela rota de status (sem dados sensíveis)."""
    out: dict[str, Any] = {
        "paymentId": pending.cielo_payment_id,
        "method": pending.payment_method,
        "status": pending.payment_status,
        "processed": bool(pending.processed),
        "amount": f"{Decimal(str(pending.total_amount)):.2f}",
        "billingPeriod": pending.billing_period,
        "createdAt": pending.created_at.isoformat() if pending.created_at else None,
        "expiresAt": pending.expires_at.isoformat() if pending.expires_at else None,
        "expired": is_expired(pending),
    }
    if pending.payment_method == "pix" and not pending.processed:
        out["pixQrCode"] = pending.pix_qr_code
        out["pixCode"] = pending.pix_code
    return out
