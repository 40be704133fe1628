from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

from models.contract_model import Contract, ContractInstallment
from models.extensions import db
from services.date_utils import period_days


def _now() -> datetime:
    return datetime.utcnow()


def installment_amount(contract: Contract) -> Decimal:
    if contract.billing_period == "annual" and contract.annual_amount is not None:
        return Decimal(str(contract.annual_amount))
    return Decimal(str(contract.monthly_amount or 0))


def create_first_installments(
    contract: Contract,
    *,
    payment_id: str | None,
    payment_method: str,
    now: datetime | None = None,
) -> tuple[ContractInstallment, ContractInstallment]:
    """Parcela 1 (paga agora) e parcela 2 (pendente, vence no fim do período).

    Nao faz commit. O caller deve controlar a transacao.
    """
    now = now or _now()
    days = period_days(contract.billing_period)
    amount = installment_amount(contract)

    first = ContractInstallment(
        contract_id=contract.id,
        installment_number=1,
        due_date=now,
        period_start=now,
        period_end=now + timedelta(days=days),
        amount=amount,
        status="paid",
        paid_at=now,
        payment_method=payment_method,
        cielo_payment_id=payment_id,
    )
    db.session.add(first)
    db.session.flush()
    second = create_next_installment(contract, first)
    return first, second


def create_next_installment(contract: Contract, previous: ContractInstallment) -> ContractInstallment:
    """Próxima parcela: começa onde a anterior termina (períodos semiabertos).

    Idempotente: se a parcela seguinte já existe, ela é devolvida.
    Nao faz commit.
    """
    number = int(previous.installment_number) + 1
    existing = ContractInstallment.query.filter_by(
        contract_id=contract.id, installment_number=number
    ).first()
    if existing:
        return existing

    start = previous.period_end
    nxt = ContractInstallment(
        contract_id=contract.id,
        installment_number=number,
        due_date=start,
        period_start=start,
        period_end=start + timedelta(days=period_days(contract.billing_period)),
        amount=installment_amount(contract),
        status="pending",
    )
    db.session.add(nxt)
    db.session.flush()
    return nxt


def mark_installment_paid(
    installment: ContractInstallment,
    *,
    payment_id: str | None,
    payment_method: str | None,
    now: datetime | None = None,
) -> bool:
    if installment.status == "paid":
        return False
    installment.status = "paid"
    installment.paid_at = now or _now()
    installment.cielo_payment_id = payment_id or installment.cielo_payment_id
    installment.payment_method = payment_method or installment.payment_method
    return True


def get_installment_by_payment_id(payment_id: str | None) -> ContractInstallment | None:
    if not payment_id:
        return None
    return ContractInstallment.query.filter_by(cielo_payment_id=payment_id).first()
