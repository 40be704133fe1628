from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from flask import current_app

from models.extensions import db
from models.plan_model import Plan
from services.cielo import CieloError, GatewayPayment, STATUS_PENDING
from services.coupons import normalize_code, validate_coupon
from services.document_validation import (
    normalize_cep,
    normalize_cpf,
    normalize_email,
    normalize_phone,
    only_digits,
    validate_cpf,
    validate_email,
)
from services.errors import (
    GatewayError,
    InvalidMethodError,
    MaterializationError,
    NotFoundError,
    ValidationError,
)
from services.materializer import materialize_pending_payment
from services.pending_payment_store import (
    PendingPaymentData,
    create_pending_payment,
    pix_expiration,
)
from services.pricing import PriceQuote, from_cents, quote

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("credit_card", "pix")
_PET_FIELDS = ("name", "species", "breed", "age", "sex", "castrated", "weight")


@dataclass
class Customer:
    name: str
    email: str
    cpf: str


@dataclass
class Address:
    phone: str = ""
    address: str = ""
    number: str = ""
    complement: str = ""
    district: str = ""
    city: str = ""
    state: str = ""
    cep: str = ""

    def as_dict(self) -> dict[str, str]:
        return {
            "address": self.address,
            "number": self.number,
            "complement": self.complement,
            "district": self.district,
            "city": self.city,
            "state": self.state,
            "cep": self.cep,
        }


@dataclass
class CardData:
    card_number: str
    holder: str
    expiration_date: str
    security_code: str
    installments: int = 1


@dataclass
class CheckoutRequest:
    plan_id: int
    customer: Customer
    address: Address
    pets: list[dict[str, Any]] = field(default_factory=list)
    coupon: str | None = None
    seller_id: str | None = None

    payment_method = ""


@dataclass
class CardCheckoutRequest(CheckoutRequest):
    card: CardData | None = None

    payment_method = "credit_card"


@dataclass
class PixCheckoutRequest(CheckoutRequest):
    payment_method = "pix"


def _text(value: Any, max_len: int = 255) -> str:
    if value is None:
        return ""
    return str(value).strip()[:max_len]


def _parse_pets(raw: Any) -> list[dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    pets = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        pet = {k: item.get(k) for k in _PET_FIELDS if item.get(k) not in (None, "")}
        pet["name"] = _text(pet.get("name"), 120) or "Pet"
        pet["castrated"] = bool(item.get("castrated"))
        pets.append(pet)
    return pets


def _parse_installments(value: Any) -> int:
    try:
        n = int(value or 1)
    except (TypeError, ValueError):
        return 1
    return min(max(n, 1), 12)


def parse_checkout_request(body: Any) -> CardCheckoutRequest | PixCheckoutRequest:
    """Valida o corpo do checkout e devolve o request tipado pelo método."""
    if not isinstance(body, dict):
        raise ValidationError("Dados obrigatórios ausentes", details="Corpo JSON inválido")

    payment_data = body.get("paymentData")
    plan_data = body.get("planData")
    method = _text(body.get("paymentMethod"), 20).lower()

    missing = [
        name
        for name, value in (("paymentData", payment_data), ("planData", plan_data), ("paymentMethod", method))
        if not value
    ]
    if missing:
        raise ValidationError("Dados obrigatórios ausentes", details=", ".join(missing))
    if not isinstance(payment_data, dict) or not isinstance(plan_data, dict):
        raise ValidationError("Dados obrigatórios ausentes", details="paymentData/planData devem ser objetos")
    if method not in PAYMENT_METHODS:
        raise InvalidMethodError(details=f"paymentMethod={method}")

    try:
        plan_id = int(plan_data.get("planId"))
    except (TypeError, ValueError):
        raise ValidationError("Plano inválido", details="planData.planId") from None

    raw_customer = payment_data.get("customer") or {}
    customer = Customer(
        name=_text(raw_customer.get("name")),
        email=normalize_email(raw_customer.get("email")),
        cpf=normalize_cpf(raw_customer.get("cpf")),
    )
    errors = []
    if not customer.name:
        errors.append("customer.name")
    if not validate_email(customer.email):
        errors.append("customer.email")
    if customer.cpf and not validate_cpf(customer.cpf):
        errors.append("customer.cpf")
    if method == "pix" and not customer.cpf:
        errors.append("customer.cpf")

    raw_address = body.get("addressData") or {}
    if not isinstance(raw_address, dict):
        raw_address = {}
    address = Address(
        phone=normalize_phone(raw_address.get("phone")),
        address=_text(raw_address.get("address")),
        number=_text(raw_address.get("number"), 20),
        complement=_text(raw_address.get("complement"), 120),
        district=_text(raw_address.get("district"), 120),
        city=_text(raw_address.get("city"), 120),
        state=_text(raw_address.get("state"), 2).upper(),
        cep=normalize_cep(raw_address.get("cep")),
    )

    common = dict(
        plan_id=plan_id,
        customer=customer,
        address=address,
        pets=_parse_pets(payment_data.get("pets")),
        coupon=normalize_code(body.get("coupon")) or None,
        seller_id=_text(body.get("sellerId"), 64) or None,
    )

    if method == "pix":
        if errors:
            raise ValidationError("Dados inválidos", details=", ".join(sorted(set(errors))))
        return PixCheckoutRequest(**common)

    raw_payment = payment_data.get("payment") or {}
    card = CardData(
        card_number=only_digits(raw_payment.get("cardNumber")),
        holder=_text(raw_payment.get("holder"), 120),
        expiration_date=_text(raw_payment.get("expirationDate"), 10),
        security_code=_text(raw_payment.get("securityCode"), 4),
        installments=_parse_installments(raw_payment.get("installments")),
    )
    for name in ("card_number", "holder", "expiration_date", "security_code"):
        if not getattr(card, name):
            errors.append(f"payment.{name}")
    if errors:
        raise ValidationError("Dados inválidos", details=", ".join(sorted(set(errors))))
    return CardCheckoutRequest(card=card, **common)


def price_checkout(req: CheckoutRequest, plan: Plan) -> PriceQuote:
    coupon_type = coupon_value = None
    coupon_code = None
    if req.coupon:
        try:
            validation = validate_coupon(req.coupon)
        except Exception:
            # cupom nunca bloqueia o checkout: segue sem desconto
            logger.warning("Falha ao validar cupom %s; seguindo sem desconto", req.coupon, exc_info=True)
        else:
            if validation.valid:
                coupon_code, coupon_type, coupon_value = validation.code, validation.type, validation.value
            else:
                logger.info("Cupom %s recusado: %s", req.coupon, validation.message)

    return quote(
        plan.name,
        plan.base_price,
        len(req.pets),
        coupon_code=coupon_code,
        coupon_type=coupon_type,
        coupon_value=coupon_value,
    )


def _merchant_order_id() -> str:
    return f"UNIPET-{datetime.utcnow():%Y%m%d%H%M%S}-{uuid.uuid4().hex[:8].upper()}"


def _gateway_error(exc: CieloError) -> GatewayError:
    extra = {}
    if exc.code:
        extra["returnCode"] = exc.code
    return GatewayError(details=exc.message, extra=extra)


def _pending_data(
    req: CheckoutRequest, plan: Plan, price: PriceQuote, payment: GatewayPayment, status: str
) -> PendingPaymentData:
    return PendingPaymentData(
        cielo_payment_id=payment.payment_id,
        payment_method=req.payment_method,
        payment_status=status,
        customer_name=req.customer.name,
        customer_email=req.customer.email,
        customer_cpf=req.customer.cpf or None,
        customer_phone=req.address.phone or None,
        address=req.address.as_dict(),
        plan_id=plan.id,
        billing_period=price.billing_period,
        total_amount=price.total_amount,
        pets=req.pets,
        seller_id=req.seller_id,
        coupon_code=price.coupon_code,
        coupon_discount_amount=from_cents(price.discount_cents) if price.coupon_code else None,
    )


def _client_summary(client) -> dict[str, Any] | None:
    if client is None:
        return None
    return {"id": client.id, "name": client.full_name, "email": client.email}


def process_card_checkout(
    req: CardCheckoutRequest, plan: Plan, price: PriceQuote, gateway, correlation_id: str
) -> dict[str, Any]:
    try:
        payment = gateway.create_credit_card_payment(
            merchant_order_id=_merchant_order_id(),
            customer={
                "name": req.customer.name,
                "email": req.customer.email,
                "cpf": req.customer.cpf,
                "address": {
                    "street": req.address.address,
                    "number": req.address.number,
                    "complement": req.address.complement,
                    "zip_code": req.address.cep,
                    "city": req.address.city,
                    "state": req.address.state,
                },
            },
            amount_cents=price.total_cents,
            installments=req.card.installments,
            card={
                "card_number": req.card.card_number,
                "holder": req.card.holder,
                "expiration_date": req.card.expiration_date,
                "security_code": req.card.security_code,
            },
        )
    except CieloError as exc:
        logger.warning(
            "Checkout cartao: erro Cielo code=%s (correlation_id=%s)", exc.code, correlation_id
        )
        raise _gateway_error(exc) from exc

    status = "approved" if payment.approved else "rejected"
    data = _pending_data(req, plan, price, payment, status)
    data.metadata = {
        "merchantOrderId": payment.raw.get("MerchantOrderId") if payment.raw else None,
        "authorizationCode": payment.authorization_code,
        "tid": payment.tid,
        "proofOfSale": payment.proof_of_sale,
        "returnCode": payment.return_code,
        "returnMessage": payment.return_message,
        "cardToken": payment.card_token,
        "cardBrand": payment.card_brand,
        "cardLastDigits": payment.card_last_digits,
    }
    pending = create_pending_payment(data)

    if not payment.approved:
        logger.info(
            "Checkout cartao recusado: payment_id=%s status=%s return_code=%s",
            payment.payment_id,
            payment.status,
            payment.return_code,
        )
        raise GatewayError(
            "Pagamento não autorizado",
            details=payment.return_message,
            extra={
                "status": payment.status,
                "returnCode": payment.return_code,
                "returnMessage": payment.return_message,
                "paymentId": payment.payment_id,
            },
        )

    body: dict[str, Any] = {
        "success": True,
        "message": "Pagamento aprovado com sucesso",
        "payment": {
            "paymentId": payment.payment_id,
            "status": payment.status,
            "method": "credit_card",
            "amount": f"{price.total_amount:.2f}",
        },
    }
    try:
        result = materialize_pending_payment(pending, correlation_id=correlation_id)
    except MaterializationError:
        # dinheiro já foi capturado: não expor falha ao cliente, fica para reconciliação
        logger.error(
            "Pagamento %s aprovado mas nao materializado; reprocessar (correlation_id=%s)",
            payment.payment_id,
            correlation_id,
        )
        body["message"] = "Pagamento aprovado. Seu contrato está sendo processado."
        return body

    body["client"] = _client_summary(result.client)
    return body


def process_pix_checkout(
    req: PixCheckoutRequest, plan: Plan, price: PriceQuote, gateway, correlation_id: str
) -> dict[str, Any]:
    try:
        payment = gateway.create_pix_payment(
            merchant_order_id=_merchant_order_id(),
            customer_name=req.customer.name,
            cpf=req.customer.cpf,
            email=req.customer.email,
            amount_cents=price.total_cents,
        )
    except CieloError as exc:
        logger.warning("Checkout PIX: erro Cielo code=%s (correlation_id=%s)", exc.code, correlation_id)
        raise _gateway_error(exc) from exc

    if payment.status != STATUS_PENDING:
        raise GatewayError(
            "Erro ao gerar PIX",
            details=payment.return_message or "Status inesperado da Cielo",
            extra={"status": payment.status, "returnCode": payment.return_code},
        )
    if not payment.qr_code_base64 or not payment.qr_code_string:
        raise GatewayError("Erro ao gerar PIX", details="QR Code não retornado pela Cielo")

    data = _pending_data(req, plan, price, payment, "pending")
    data.pix_qr_code = payment.qr_code_base64
    data.pix_code = payment.qr_code_string
    data.expires_at = pix_expiration(hours=int(current_app.config.get("PIX_EXPIRATION_HOURS", 24)))
    data.metadata = {"returnCode": payment.return_code, "returnMessage": payment.return_message}
    create_pending_payment(data)

    logger.info(
        "Checkout PIX gerado: payment_id=%s valor=%s (correlation_id=%s)",
        payment.payment_id,
        price.total_cents,
        correlation_id,
    )
    return {
        "success": True,
        "message": "PIX gerado com sucesso",
        "payment": {
            "paymentId": payment.payment_id,
            "status": payment.status,
            "method": "pix",
            "amount": f"{price.total_amount:.2f}",
            "pixQrCode": payment.qr_code_base64,
            "pixCode": payment.qr_code_string,
        },
    }


def process_checkout(body: Any, *, gateway, correlation_id: str) -> dict[str, Any]:
    req = parse_checkout_request(body)

    plan = db.session.get(Plan, req.plan_id)
    if plan is None or not plan.is_active:
        raise NotFoundError("Plano não encontrado", details=f"planId={req.plan_id}", status=400)

    price = price_checkout(req, plan)
    logger.info(
        "Checkout %s: plano=%s pets=%s total_cents=%s cupom=%s (correlation_id=%s)",
        req.payment_method,
        plan.name,
        price.pet_count,
        price.total_cents,
        price.coupon_code,
        correlation_id,
    )

    if isinstance(req, CardCheckoutRequest):
        return process_card_checkout(req, plan, price, gateway, correlation_id)
    return process_pix_checkout(req, plan, price, gateway, correlation_id)
