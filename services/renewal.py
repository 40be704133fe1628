from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable

from models.contract_model import Contract, ContractInstallment
from models.extensions import db
from services.cielo import CieloError
from services.date_utils import days_between, start_of_day
from services.errors import RenewalAttemptError
from services.installments import create_next_installment, mark_installment_paid
from services.notification_service import (
    NotificationService,
    PaymentOverdueData,
    PaymentReminderData,
)
from services.pricing import to_cents

logger = logging.getLogger(__name__)

CARD_PAYMENT_METHODS = {"credit_card", "cartao"}
DEFAULT_OVERDUE_NOTIFICATION_DAYS = (1, 3, 7, 15, 30)
NO_TOKEN_REASON = (
    "Pagamento automático não configurado. Por favor, efetue o pagamento manualmente "
    "ou cadastre um cartão para débito automático."
)
GENERIC_FAILURE_REASON = (
    "Não foi possível processar a cobrança no momento. Por favor, efetue o pagamento manualmente."
)


def _now() -> datetime:
    return datetime.utcnow()


@dataclass
class RenewalAttempt:
    contract_id: int
    installment_id: int
    success: bool
    payment_id: str | None = None
    error: str | None = None


@dataclass
class RenewalBatchResult:
    processed: int = 0
    successful: int = 0
    failed: int = 0
    attempts: list[RenewalAttempt] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "successful": self.successful,
            "failed": self.failed,
            "attempts": [asdict(a) for a in self.attempts],
        }


def days_overdue(due_date: datetime, now: datetime) -> int:
    return days_between(due_date, now)


def is_overdue(installment: ContractInstallment, now: datetime) -> bool:
    """Vencida há pelo menos 1 dia inteiro e ainda não paga."""
    if installment.status == "paid":
        return False
    if installment.due_date >= now:
        return False
    return days_overdue(installment.due_date, now) >= 1


def find_overdue_installments(now: datetime | None = None) -> list[ContractInstallment]:
    now = now or _now()
    candidates = (
        ContractInstallment.query.filter(
            ContractInstallment.status != "paid",
            ContractInstallment.due_date <= now - timedelta(days=1),
        )
        .order_by(ContractInstallment.due_date.asc(), ContractInstallment.id.asc())
        .all()
    )
    return [i for i in candidates if is_overdue(i, now)]


def find_installments_due_in(days: int, now: datetime | None = None) -> list[ContractInstallment]:
    """Parcelas não pagas que vencem exatamente daqui a `days` dias (calendário)."""
    target = start_of_day(now or _now()) + timedelta(days=days)
    return (
        ContractInstallment.query.filter(
            ContractInstallment.status != "paid",
            ContractInstallment.due_date >= target,
            ContractInstallment.due_date < target + timedelta(days=1),
        )
        .order_by(ContractInstallment.due_date.asc(), ContractInstallment.id.asc())
        .all()
    )


def should_send_overdue_notice(days: int, thresholds: Iterable[int] = DEFAULT_OVERDUE_NOTIFICATION_DAYS) -> bool:
    return days in set(thresholds)


class AutomaticRenewalService:
    def __init__(
        self,
        gateway,
        notifications: NotificationService,
        *,
        overdue_notification_days: Iterable[int] = DEFAULT_OVERDUE_NOTIFICATION_DAYS,
        suspend_after_days: int = 15,
        cancel_after_days: int = 60,
    ) -> None:
        self.gateway = gateway
        self.notifications = notifications
        self.overdue_notification_days = tuple(overdue_notification_days)
        self.suspend_after_days = suspend_after_days
        self.cancel_after_days = cancel_after_days

    @classmethod
    def from_app(cls, app) -> "AutomaticRenewalService":
        cfg = app.config
        return cls(
            app.extensions["cielo"],
            app.extensions["notifications"],
            overdue_notification_days=cfg.get("OVERDUE_NOTIFICATION_DAYS", DEFAULT_OVERDUE_NOTIFICATION_DAYS),
            suspend_after_days=int(cfg.get("CONTRACT_SUSPEND_AFTER_DAYS", 15)),
            cancel_after_days=int(cfg.get("CONTRACT_CANCEL_AFTER_DAYS", 60)),
        )

    def process_automatic_renewals(self, now: datetime | None = None) -> RenewalBatchResult:
        now = now or _now()
        overdue = find_overdue_installments(now)
        result = RenewalBatchResult(processed=len(overdue))
        logger.info("Renovacao automatica: %s parcela(s) vencida(s)", len(overdue))

        for installment in overdue:
            contract = db.session.get(Contract, installment.contract_id)
            if contract is None:
                logger.warning("Renovacao: contrato %s nao encontrado", installment.contract_id)
                continue
            if (contract.payment_method or "").lower() not in CARD_PAYMENT_METHODS:
                continue
            if contract.status == "cancelled":
                continue

            try:
                attempt = self.attempt_renewal(contract, installment, now)
            except Exception as exc:
                db.session.rollback()
                logger.error(
                    "Renovacao: erro na parcela %s do contrato %s",
                    installment.id,
                    contract.id,
                    exc_info=True,
                )
                attempt = RenewalAttempt(contract.id, installment.id, False, error=str(exc))

            result.attempts.append(attempt)
            if attempt.success:
                result.successful += 1
            else:
                result.failed += 1

        logger.info(
            "Renovacao automatica concluida: processadas=%s sucesso=%s falha=%s",
            result.processed,
            result.successful,
            result.failed,
        )
        return result

    def attempt_renewal(
        self, contract: Contract, installment: ContractInstallment, now: datetime
    ) -> RenewalAttempt:
        client = contract.client
        pet = contract.pet
        plan = contract.plan
        if client is None or pet is None or plan is None:
            raise RenewalAttemptError(
                "Dados incompletos do contrato",
                details=f"contract_id={contract.id}",
            )

        if not contract.cielo_card_token:
            self.notifications.send_renewal_failure(
                client.full_name, client.email, installment.amount, plan.name, pet.name, NO_TOKEN_REASON
            )
            return RenewalAttempt(contract.id, installment.id, False, error="Sem token de cartão")

        try:
            payment = self.gateway.charge_with_token(
                merchant_order_id=f"RENEWAL-{contract.contract_number}-{int(now.timestamp())}",
                customer_name=client.full_name,
                email=client.email,
                cpf=client.cpf,
                amount_cents=to_cents(installment.amount),
                card_token=contract.cielo_card_token,
                brand=contract.card_brand or "Visa",
            )
        except CieloError as exc:
            logger.warning(
                "Renovacao: cobranca recusada pela Cielo (contrato=%s, code=%s)",
                contract.id,
                exc.code,
            )
            self.notifications.send_renewal_failure(
                client.full_name, client.email, installment.amount, plan.name, pet.name, exc.message
            )
            return RenewalAttempt(contract.id, installment.id, False, error=exc.message)
        except Exception as exc:
            logger.error(
                "Renovacao: erro inesperado ao cobrar contrato %s", contract.id, exc_info=True
            )
            self.notifications.send_renewal_failure(
                client.full_name, client.email, installment.amount, plan.name, pet.name, GENERIC_FAILURE_REASON
            )
            return RenewalAttempt(contract.id, installment.id, False, error=str(exc))

        if not payment.approved:
            reason = payment.return_message or "Pagamento não aprovado"
            self.notifications.send_renewal_failure(
                client.full_name, client.email, installment.amount, plan.name, pet.name, reason
            )
            return RenewalAttempt(
                contract.id, installment.id, False, payment_id=payment.payment_id, error=reason
            )

        mark_installment_paid(
            installment, payment_id=payment.payment_id, payment_method="credit_card", now=now
        )
        contract.status = "active"
        create_next_installment(contract, installment)
        db.session.commit()

        self.notifications.send_renewal_success(
            client.full_name, client.email, installment.amount, plan.name, pet.name
        )
        return RenewalAttempt(contract.id, installment.id, True, payment_id=payment.payment_id)

    def send_upcoming_due_notifications(self, days_ahead: int = 3, now: datetime | None = None) -> int:
        sent = 0
        for installment in find_installments_due_in(days_ahead, now):
            contract = installment.contract
            if contract is None or contract.status == "cancelled":
                continue
            if contract.client is None or contract.pet is None or contract.plan is None:
                continue
            ok = self.notifications.send_payment_reminder(
                PaymentReminderData(
                    client_name=contract.client.full_name,
                    client_email=contract.client.email,
                    amount=installment.amount,
                    due_date=installment.due_date,
                    plan_name=contract.plan.name,
                    pet_name=contract.pet.name,
                    days_until_due=days_ahead,
                )
            )
            if ok:
                sent += 1
        logger.info("Lembretes de vencimento enviados: %s", sent)
        return sent

    def send_overdue_notifications(self, now: datetime | None = None) -> int:
        now = now or _now()
        sent = 0
        for installment in find_overdue_installments(now):
            days = days_overdue(installment.due_date, now)
            if not should_send_overdue_notice(days, self.overdue_notification_days):
                continue
            contract = installment.contract
            if contract is None or contract.status == "cancelled":
                continue
            if contract.client is None or contract.pet is None or contract.plan is None:
                continue
            ok = self.notifications.send_payment_overdue(
                PaymentOverdueData(
                    client_name=contract.client.full_name,
                    client_email=contract.client.email,
                    amount=installment.amount,
                    due_date=installment.due_date,
                    plan_name=contract.plan.name,
                    pet_name=contract.pet.name,
                    days_overdue=days,
                )
            )
            if ok:
                sent += 1
        logger.info("Avisos de atraso enviados: %s", sent)
        return sent

    def calculate_contract_status(self, contract: Contract, now: datetime) -> str:
        oldest: int | None = None
        for installment in contract.installments:
            if is_overdue(installment, now):
                days = days_overdue(installment.due_date, now)
                oldest = days if oldest is None else max(oldest, days)
        if oldest is None:
            return "active"
        if oldest > self.cancel_after_days:
            return "cancelled"
        if oldest > self.suspend_after_days:
            return "suspended"
        return "active"

    def update_contract_statuses(self, now: datetime | None = None) -> int:
        """Recalcula o status pelos atrasos. Retorna quantos contratos mudaram."""
        now = now or _now()
        changed = 0
        contracts = Contract.query.filter(Contract.status != "cancelled").all()
        for contract in contracts:
            new_status = self.calculate_contract_status(contract, now)
            if new_status != contract.status:
                logger.info(
                    "Contrato %s: %s -> %s", contract.contract_number, contract.status, new_status
                )
                contract.status = new_status
                changed += 1
        db.session.commit()
        return changed
