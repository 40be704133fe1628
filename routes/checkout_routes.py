from __future__ import annotations

import logging
import uuid

from flask import Blueprint, current_app, g, jsonify, request

from models.extensions import db
from services.cielo import get_gateway
from services.checkout import process_checkout
from services.errors import PaymentPipelineError
from services.pending_payment_store import get_by_gateway_payment_id, to_summary

logger = logging.getLogger(__name__)

checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")


@checkout_bp.errorhandler(PaymentPipelineError)
def _pipeline_error(exc: PaymentPipelineError):
    return jsonify(exc.payload()), exc.status


@checkout_bp.post("/process")
def checkout_process():
    cid = (request.headers.get("X-Correlation-ID") or "").strip()[:64] or uuid.uuid4().hex
    g.correlation_id = cid
    payload = request.get_json(silent=True)

    try:
        body = process_checkout(payload, gateway=get_gateway(), correlation_id=cid)
    except PaymentPipelineError:
        raise
    except Exception as exc:
        db.session.rollback()
        logger.error("Checkout: erro inesperado (correlation_id=%s)", cid, exc_info=True)
        error = {"error": "Erro interno do servidor"}
        if not current_app.config.get("IS_PRODUCTION"):
            error["details"] = str(exc)
        return jsonify(error), 500

    return jsonify(body), 200


@checkout_bp.get("/status/<payment_id>")
def checkout_status(payment_id: str):
    pending = get_by_gateway_payment_id(payment_id)
    if pending is None:
        return jsonify({"error": "Pagamento não encontrado"}), 404
    return jsonify(to_summary(pending)), 200
