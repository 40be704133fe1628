from __future__ import annotations

import json
import logging
from typing import Any, Callable

import click
from flask import Flask, current_app

from services.errors import MaterializationError, NotFoundError
from services.materializer import materialize_pending_payment
from services.pending_payment_store import get_by_gateway_payment_id, list_unprocessed, to_summary
from services.renewal import AutomaticRenewalService

logger = logging.getLogger(__name__)

# Horários sugeridos para o cron (America/Sao_Paulo):
# renewal 03:00, status 04:00, upcoming 08:00, overdue 10:00
JOB_NAMES = ("upcoming", "renewal", "status", "overdue")


def _jobs(service: AutomaticRenewalService) -> dict[str, Callable[[], Any]]:
    days_ahead = int(current_app.config.get("REMINDER_DAYS_AHEAD", 3))
    return {
        "upcoming": lambda: {"sent": service.send_upcoming_due_notifications(days_ahead)},
        "renewal": lambda: service.process_automatic_renewals().as_dict(),
        "status": lambda: {"updated": service.update_contract_statuses()},
        "overdue": lambda: {"sent": service.send_overdue_notifications()},
    }


def run_job(name: str, service: AutomaticRenewalService | None = None) -> Any:
    """Executa um job agendado pelo nome. Requer app context."""
    if name not in JOB_NAMES:
        raise NotFoundError("Job desconhecido", details=name)
    if not current_app.config.get("ENABLE_CRON_JOBS", True):
        logger.info("Jobs desabilitados (ENABLE_CRON_JOBS=false); ignorando %s", name)
        return None
    service = service or AutomaticRenewalService.from_app(current_app)
    logger.info("Job %s iniciado", name)
    result = _jobs(service)[name]()
    logger.info("Job %s concluido: %s", name, result)
    return result


def reprocess_payment(payment_id: str) -> dict[str, Any]:
    """Tenta de novo a materialização de um pagamento aprovado e não processado."""
    pending = get_by_gateway_payment_id(payment_id)
    if pending is None:
        raise NotFoundError("Pagamento não encontrado", details=payment_id)
    if pending.payment_status != "approved":
        gateway = current_app.extensions["cielo"]
        if not gateway.query_payment(payment_id).approved:
            return {"paymentId": payment_id, "result": "not_approved"}
    result = materialize_pending_payment(pending, correlation_id=f"reprocess-{payment_id}")
    return {
        "paymentId": payment_id,
        "result": "materialized" if result.created else "already_processed",
        "contracts": [c.contract_number for c in result.contracts],
    }


def unprocessed_payments(limit: int = 100) -> list[dict[str, Any]]:
    """Pagamentos ainda não materializados, para conciliação manual."""
    return [to_summary(p) for p in list_unprocessed(limit)]


def register_cli(app: Flask) -> None:
    @app.cli.group("jobs")
    def jobs_group():
        """Jobs de cobrança (renovação, lembretes, status de contratos)."""

    @jobs_group.command("run")
    @click.argument("name", type=click.Choice(JOB_NAMES))
    def run_command(name: str):
        result = run_job(name)
        click.echo(json.dumps(result, ensure_ascii=False, default=str))

    @jobs_group.command("reprocess")
    @click.argument("payment_id")
    def reprocess_command(payment_id: str):
        try:
            result = reprocess_payment(payment_id)
        except (NotFoundError, MaterializationError) as exc:
            raise click.ClickException(f"{exc.message}: {exc.details or ''}") from exc
        click.echo(json.dumps(result, ensure_ascii=False))

    @jobs_group.command("pending")
    @click.option("--limit", default=100, show_default=True, type=int)
    def pending_command(limit: int):
        click.echo(json.dumps(unprocessed_payments(limit), ensure_ascii=False))
