from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request

from services.cielo import CieloError, get_gateway
from services.errors import ValidationError
from services.webhook_processor import parse_notification, process_notification
from services.webhook_security import require_cielo_webhook

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")


@webhooks_bp.post("/cielo")
@require_cielo_webhook
def cielo_webhook():
    cid = g.correlation_id
    payload = request.get_json(silent=True)
    try:
        notification = parse_notification(payload)
    except ValidationError as exc:
        logger.warning("Webhook Cielo invalido: %s (correlation_id=%s)", exc.details, cid)
        return jsonify({**exc.payload(), "correlationId": cid}), 400

    try:
        outcome = process_notification(notification, gateway=get_gateway(), correlation_id=cid)
    except CieloError as exc:
        # falha transitória na consulta: a Cielo reenvia a notificação
        logger.warning(
            "Webhook: consulta a Cielo falhou para %s code=%s (correlation_id=%s)",
            notification.payment_id,
            exc.code,
            cid,
        )
        return jsonify({"ok": False, "error": "gateway_unavailable", "correlationId": cid}), 502

    return jsonify({"ok": True, "result": outcome, "correlationId": cid}), 200
