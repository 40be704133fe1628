from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from models.extensions import db
from services.cielo import REJECTED_STATUSES, CieloError
from services.errors import MaterializationError, ValidationError
from services.installments import (
    create_next_installment,
    get_installment_by_payment_id,
    mark_installment_paid,
)
from services.materializer import materialize_pending_payment
from services.pending_payment_store import get_by_gateway_payment_id, update_status

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("security_audit")

CHANGE_PAYMENT_STATUS = 1
CHANGE_RECURRENCY = 2
CHANGE_CHARGEBACK = 3


@dataclass
class WebhookNotification:
    payment_id: str
    change_type: int
    recurrent_payment_id: str | None = None


def parse_notification(payload: Any) -> WebhookNotification:
    if not isinstance(payload, dict):
        raise ValidationError("Payload inválido", details="JSON objeto esperado")
    payment_id = str(payload.get("PaymentId") or payload.get("paymentId") or "").strip()
    try:
        change_type = int(payload.get("ChangeType") or payload.get("changeType") or 0)
    except (TypeError, ValueError):
        change_type = 0
    if not payment_id:
        raise ValidationError("Payload inválido", details="PaymentId ausente")
    return WebhookNotification(
        payment_id=payment_id,
        change_type=change_type,
        recurrent_payment_id=payload.get("RecurrentPaymentId"),
    )


def process_notification(notification: WebhookNotification, *, gateway, correlation_id: str) -> str:
    """Processa uma notificação já autenticada. Retorna o desfecho (para log/resposta)."""
    if notification.change_type == CHANGE_PAYMENT_STATUS:
        return handle_payment_status_change(notification.payment_id, gateway=gateway, correlation_id=correlation_id)
    if notification.change_type == CHANGE_RECURRENCY:
        audit_logger.info(
            "webhook recurrency payment_id=%s recurrent_payment_id=%s correlation_id=%s",
            notification.payment_id,
            notification.recurrent_payment_id,
            correlation_id,
        )
        return "recurrency_logged"
    if notification.change_type == CHANGE_CHARGEBACK:
        audit_logger.warning(
            "webhook chargeback payment_id=%s correlation_id=%s",
            notification.payment_id,
            correlation_id,
        )
        return "chargeback_logged"

    logger.warning(
        "Webhook com ChangeType desconhecido: %s (payment_id=%s, correlation_id=%s)",
        notification.change_type,
        notification.payment_id,
        correlation_id,
    )
    return "ignored"


def handle_payment_status_change(payment_id: str, *, gateway, correlation_id: str) -> str:
    try:
        payment = gateway.query_payment(payment_id)
    except CieloError as exc:
        if exc.status_code == 404:
            # notificações de teste do sandbox apontam para pagamentos inexistentes
            logger.info(
                "Webhook: pagamento %s nao encontrado na Cielo (correlation_id=%s)",
                payment_id,
                correlation_id,
            )
            return "payment_not_found"
        raise

    pending = get_by_gateway_payment_id(payment_id)
    logger.info(
        "Webhook: payment_id=%s status=%s pending=%s (correlation_id=%s)",
        payment_id,
        payment.status,
        pending.id if pending else None,
        correlation_id,
    )

    if payment.approved:
        if pending is not None:
            if pending.processed:
                return "already_processed"
            update_status(pending, "approved")
            try:
                result = materialize_pending_payment(pending, correlation_id=correlation_id)
            except MaterializationError:
                logger.error(
                    "Webhook: materializacao falhou para %s; sera reprocessado (correlation_id=%s)",
                    payment_id,
                    correlation_id,
                )
                return "materialization_failed"
            return "materialized" if result.created else "already_processed"

        installment = get_installment_by_payment_id(payment_id)
        if installment is not None:
            if mark_installment_paid(installment, payment_id=payment_id, payment_method=None):
                contract = installment.contract
                contract.status = "active"
                create_next_installment(contract, installment)
                db.session.commit()
                return "installment_paid"
            return "already_processed"

        logger.warning(
            "Webhook: pagamento aprovado %s sem registro local (correlation_id=%s)",
            payment_id,
            correlation_id,
        )
        return "unmatched"

    if payment.status in REJECTED_STATUSES and pending is not None and not pending.processed:
        update_status(pending, "rejected")
        return "rejected"

    return "status_recorded"
