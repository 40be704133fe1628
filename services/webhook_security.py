from __future__ import annotations

import hashlib
import hmac
import ipaddress
import logging
import uuid
from functools import wraps
from typing import Any, Callable, Mapping

from flask import current_app, g, jsonify, request

from services.rate_limiter import client_ip

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("security_audit")

# Faixas publicadas pela Cielo para notificações
DEFAULT_CIELO_NETWORKS = ("200.201.168.0/24", "200.201.174.0/24", "200.201.163.0/24")
LOCALHOST_ADDRESSES = {"127.0.0.1", "::1", "localhost"}
CIELO_USER_AGENTS = ("Cielo-Webhook", "CieloEcommerce", "Cielo/1.0")
SIGNATURE_HEADERS = ("X-Cielo-Signature", "Cielo-Signature")


def parse_networks(raw: str | None) -> tuple[ipaddress.IPv4Network | ipaddress.IPv6Network, ...]:
    items = [p.strip() for p in (raw or "").split(",") if p.strip()] or list(DEFAULT_CIELO_NETWORKS)
    networks = []
    for item in items:
        try:
            networks.append(ipaddress.ip_network(item, strict=False))
        except ValueError:
            logger.warning("CIELO_WEBHOOK_ALLOWED_IPS: faixa invalida ignorada: %s", item)
    return tuple(networks)


def is_ip_allowed(ip: str, networks, *, allow_localhost: bool = False) -> bool:
    if allow_localhost and ip in LOCALHOST_ADDRESSES:
        return True
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return any(addr.version == net.version and addr in net for net in networks)


def is_expected_user_agent(user_agent: str | None) -> bool:
    ua = user_agent or ""
    return any(marker in ua for marker in CIELO_USER_AGENTS)


def compute_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """HMAC-SHA256 hex do corpo bruto; comparação em tempo constante."""
    if not signature:
        return False
    provided = signature.strip().lower()
    if provided.startswith("sha256="):
        provided = provided[7:]
    expected = compute_signature(body, secret)
    return hmac.compare_digest(expected.encode("ascii"), provided.encode("utf-8"))


def request_signature() -> str | None:
    for header in SIGNATURE_HEADERS:
        value = request.headers.get(header)
        if value:
            return value
    return None


def assign_correlation_id() -> str:
    cid = (request.headers.get("X-Correlation-ID") or "").strip()[:64] or uuid.uuid4().hex
    g.correlation_id = cid
    return cid


def audit(event: str, correlation_id: str, **details: Any) -> None:
    parts = " ".join(f"{k}={v}" for k, v in details.items())
    audit_logger.info("webhook %s correlation_id=%s %s", event, correlation_id, parts)


def warn_if_insecure_config(config: Mapping[str, Any]) -> None:
    if not (config.get("CIELO_WEBHOOK_SECRET") or "").strip():
        logger.warning(
            "CIELO_WEBHOOK_SECRET nao configurado: assinaturas de webhook NAO serao validadas."
        )


def _reject(status: int, message: str, correlation_id: str, retry_after: int | None = None):
    resp = jsonify({"error": message, "correlationId": correlation_id})
    resp.status_code = status
    if retry_after:
        resp.headers["Retry-After"] = str(retry_after)
    return resp


def require_cielo_webhook(view: Callable) -> Callable:
    """Rate limit -> IP -> user-agent (aviso) -> assinatura, antes da view."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        cfg = current_app.config
        cid = assign_correlation_id()
        ip = client_ip()
        is_production = bool(cfg.get("IS_PRODUCTION"))

        limiter = current_app.extensions["webhook_rate_limiter"]
        allowed, retry_after = limiter.check(
            f"cielo-webhook:{ip}",
            limit=int(cfg.get("WEBHOOK_RATE_LIMIT", 100)),
            window_seconds=int(cfg.get("WEBHOOK_RATE_LIMIT_WINDOW", 60)),
        )
        if not allowed:
            audit("rate_limited", cid, ip=ip)
            return _reject(429, "Too many requests", cid, retry_after)

        networks = parse_networks(cfg.get("CIELO_WEBHOOK_ALLOWED_IPS"))
        if not is_ip_allowed(ip, networks, allow_localhost=not is_production):
            audit("ip_rejected", cid, ip=ip)
            return _reject(403, "Forbidden", cid)

        if is_production and not is_expected_user_agent(request.headers.get("User-Agent")):
            audit("unexpected_user_agent", cid, ip=ip, user_agent=request.headers.get("User-Agent"))

        secret = (cfg.get("CIELO_WEBHOOK_SECRET") or "").strip()
        if secret:
            body = request.get_data(cache=True)
            if not verify_signature(body, request_signature(), secret):
                audit("invalid_signature", cid, ip=ip)
                return _reject(401, "Invalid signature", cid)
        else:
            logger.warning("Webhook aceito sem validacao de assinatura (correlation_id=%s)", cid)

        audit("accepted", cid, ip=ip)
        return view(*args, **kwargs)

    return wrapper
