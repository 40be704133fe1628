from __future__ import annotations

import logging
import re
import time
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Mapping

import requests
from flask import current_app
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from services.document_validation import only_digits, validate_cpf

logger = logging.getLogger(__name__)


class CieloError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        correlation_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.correlation_id = correlation_id


# Status numericos da Cielo -> status interno
STATUS_AUTHORIZED = 1
STATUS_PAYMENT_CONFIRMED = 2
STATUS_DENIED = 3
STATUS_VOIDED = 10
STATUS_REFUNDED = 11
STATUS_PENDING = 12
STATUS_ABORTED = 13
STATUS_SCHEDULED = 20

_STATUS_NAMES = {
    STATUS_AUTHORIZED: "pending",
    STATUS_PAYMENT_CONFIRMED: "approved",
    STATUS_DENIED: "declined",
    STATUS_VOIDED: "cancelled",
    STATUS_REFUNDED: "refunded",
    STATUS_PENDING: "pending",
    STATUS_ABORTED: "cancelled",
    STATUS_SCHEDULED: "pending",
}
REJECTED_STATUSES = {STATUS_DENIED, STATUS_VOIDED, STATUS_ABORTED}

# Só a consulta (GET) é repetida; erros 4xx não melhoram com nova tentativa.
_RETRY_STATUSES = (500, 502, 503, 504)


def map_status(status: int | None) -> str:
    if status is None:
        return "pending"
    return _STATUS_NAMES.get(int(status), "pending")


@dataclass
class GatewayPayment:
    payment_id: str
    status: int | None
    return_code: str | None = None
    return_message: str | None = None
    authorization_code: str | None = None
    tid: str | None = None
    proof_of_sale: str | None = None
    amount: int | None = None
    received_date: str | None = None
    card_token: str | None = None
    card_brand: str | None = None
    card_last_digits: str | None = None
    qr_code_base64: str | None = None
    qr_code_string: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def approved(self) -> bool:
        return self.status == STATUS_PAYMENT_CONFIRMED

    @property
    def mapped_status(self) -> str:
        return map_status(self.status)


_ELO_PREFIXES = (
    "4011", "4312", "4389", "4514", "4573", "4576", "5041", "5066",
    "5067", "5090", "6277", "6362", "6363", "6504", "6505", "6516", "6550",
)


def detect_card_brand(card_number: str) -> str:
    """Bandeira pelo prefixo (BIN). Padrão: Visa.

    Elo e Hipercard são testados antes de Visa/Master porque alguns BINs Elo
    começam com 4 ou 5.
    """
    number = only_digits(card_number)
    if number.startswith(_ELO_PREFIXES):
        return "Elo"
    if number.startswith("606282"):
        return "Hipercard"
    if number.startswith("4"):
        return "Visa"
    if number.startswith("5") and not number.startswith("50"):
        return "Master"
    if len(number) >= 4 and 2221 <= int(number[:4]) <= 2720:
        return "Master"
    if number.startswith(("34", "37")):
        return "Amex"
    if re.match(r"^30[0-5]", number) or number.startswith(("36", "38")):
        return "Diners"
    if number.startswith("50"):
        return "Aura"
    if number.startswith("35"):
        return "JCB"
    return "Visa"


def format_expiration_date(value: str | None) -> str:
    """Normaliza validade para MM/YYYY (aceita MM/YY, M/YYYY, MMYY)."""
    if not value:
        return ""
    cleaned = re.sub(r"[^0-9/]", "", str(value))

    if "/" in cleaned:
        parts = cleaned.split("/")
        if len(parts) == 2 and parts[0] and parts[1]:
            month = parts[0].zfill(2)
            year = parts[1]
            if len(year) == 2:
                year = ("20" if int(year) < 50 else "19") + year
            elif len(year) == 1:
                year = "202" + year
            return f"{month}/{year}"

    digits = only_digits(cleaned)
    if len(digits) >= 4:
        month = digits[:2]
        year = digits[2:4]
        return f"{month}/{'20' if int(year) < 50 else '19'}{year}"
    return ""


def clean_zip_code(value: str | None) -> str:
    digits = only_digits(value)
    if not digits:
        return "00000000"
    return digits.zfill(8)[:8]


def identity_type(identity: str | None) -> str:
    return "CPF" if len(only_digits(identity)) == 11 else "CNPJ"


def sanitize_error_message(message: str) -> str:
    """Remove credenciais e dados de cartão antes de logar/expor."""
    text = str(message or "")
    text = re.sub(r"merchantid\S*", "MERCHANT_ID_HIDDEN", text, flags=re.IGNORECASE)
    text = re.sub(r"merchantkey\S*", "MERCHANT_KEY_HIDDEN", text, flags=re.IGNORECASE)
    text = re.sub(r"\b\d{13,19}\b", "CARD_NUMBER_HIDDEN", text)
    return text


def validate_card_data(card: Mapping[str, Any], amount_cents: int, *, today: date | None = None) -> None:
    """Validação local antes de enviar à Cielo. Levanta CieloError(400)."""
    number = only_digits(card.get("card_number"))
    if not 13 <= len(number) <= 19:
        raise CieloError("Número do cartão inválido.", status_code=400, code="INVALID_CARD_NUMBER")
    cvv = only_digits(str(card.get("security_code") or ""))
    if len(cvv) not in (3, 4):
        raise CieloError("Código de segurança inválido.", status_code=400, code="INVALID_CVV")
    if not (card.get("holder") or "").strip():
        raise CieloError("Nome do titular é obrigatório.", status_code=400, code="INVALID_HOLDER")

    expiration = format_expiration_date(card.get("expiration_date"))
    match = re.match(r"^(\d{2})/(\d{4})$", expiration)
    if not match or not 1 <= int(match.group(1)) <= 12:
        raise CieloError("Data de validade inválida.", status_code=400, code="INVALID_EXPIRATION")
    today = today or date.today()
    if (int(match.group(2)), int(match.group(1))) < (today.year, today.month):
        raise CieloError("Cartão expirado.", status_code=400, code="CARD_EXPIRED")

    if int(amount_cents) <= 0:
        raise CieloError("Valor inválido.", status_code=400, code="INVALID_AMOUNT")


def _parse_payment(body: Any) -> GatewayPayment:
    if not isinstance(body, dict):
        raise CieloError("Resposta inválida da Cielo.")
    payment = body.get("Payment") or body.get("payment")
    if not isinstance(payment, dict):
        raise CieloError("Resposta da Cielo sem campo Payment.")

    payment_id = payment.get("PaymentId") or payment.get("paymentId")
    if not payment_id:
        raise CieloError("Cielo não retornou PaymentId.")

    card = payment.get("CreditCard") or {}
    card_number = str(card.get("CardNumber") or "")
    status = payment.get("Status")

    return GatewayPayment(
        payment_id=str(payment_id),
        status=int(status) if status is not None else None,
        return_code=_str_or_none(payment.get("ReturnCode")),
        return_message=_str_or_none(payment.get("ReturnMessage")),
        authorization_code=_str_or_none(payment.get("AuthorizationCode")),
        tid=_str_or_none(payment.get("Tid")),
        proof_of_sale=_str_or_none(payment.get("ProofOfSale")),
        amount=payment.get("Amount"),
        received_date=_str_or_none(payment.get("ReceivedDate")),
        card_token=_str_or_none(card.get("CardToken")),
        card_brand=_str_or_none(card.get("Brand")),
        card_last_digits=card_number[-4:] if card_number else None,
        qr_code_base64=_str_or_none(payment.get("QrCodeBase64Image")),
        qr_code_string=_str_or_none(payment.get("QrCodeString")),
        raw=body,
    )


def _str_or_none(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _error_from_body(resp: requests.Response) -> CieloError:
    message = f"HTTP {resp.status_code}"
    code = None
    try:
        body = resp.json()
    except ValueError:
        body = None
    # A Cielo responde erros de validacao como lista [{Code, Message}]
    if isinstance(body, list) and body and isinstance(body[0], dict):
        code = _str_or_none(body[0].get("Code"))
        message = body[0].get("Message") or message
    elif isinstance(body, dict):
        code = _str_or_none(body.get("Code"))
        message = body.get("Message") or body.get("message") or message
    elif resp.text:
        message = f"{message}: {resp.text[:200]}"
    return CieloError(sanitize_error_message(message), status_code=resp.status_code, code=code)


def _retrying_session(retries: int) -> requests.Session:
    session = requests.Session()
    retry_cfg = Retry(
        total=retries,
        backoff_factor=0.5,
        status_forcelist=_RETRY_STATUSES,
        allowed_methods=frozenset({"GET"}),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry_cfg)
    for scheme in ("https://", "http://"):
        session.mount(scheme, adapter)
    return session


class CieloClient:
    """Adaptador da API Cielo E-commerce 3.0 (cartão, PIX, consulta e token)."""

    def __init__(
        self,
        merchant_id: str,
        merchant_key: str,
        *,
        api_url: str,
        query_url: str,
        timeout: int = 30,
        max_retries: int = 3,
        environment: str = "sandbox",
    ) -> None:
        self.merchant_id = (merchant_id or "").strip()
        self.merchant_key = (merchant_key or "").strip()
        self.api_url = api_url.rstrip("/")
        self.query_url = query_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(0, int(max_retries))
        self.query_session = _retrying_session(self.max_retries)
        self.environment = environment

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "CieloClient":
        return cls(
            config.get("CIELO_MERCHANT_ID", ""),
            config.get("CIELO_MERCHANT_KEY", ""),
            api_url=config["CIELO_API_URL"],
            query_url=config["CIELO_QUERY_URL"],
            timeout=int(config.get("CIELO_TIMEOUT", 30)),
            max_retries=int(config.get("CIELO_MAX_RETRIES", 3)),
            environment=config.get("CIELO_ENVIRONMENT", "sandbox"),
        )

    @property
    def configured(self) -> bool:
        return bool(self.merchant_id and self.merchant_key)

    def _headers(self, correlation_id: str) -> dict[str, str]:
        if not self.configured:
            raise CieloError(
                "Credenciais da Cielo não configuradas.",
                code="NOT_CONFIGURED",
                correlation_id=correlation_id,
            )
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "MerchantId": self.merchant_id,
            "MerchantKey": self.merchant_key,
            "RequestId": correlation_id,
        }

    def _post_sale(self, payload: dict[str, Any], context: str) -> GatewayPayment:
        # Cobrança nunca é repetida: um timeout pode ter sido processado na Cielo.
        correlation_id = str(uuid.uuid4())
        url = f"{self.api_url}/1/sales"
        started = time.monotonic()
        try:
            resp = requests.post(
                url,
                json=payload,
                headers=self._headers(correlation_id),
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            logger.warning("Cielo: timeout em %s (correlation_id=%s)", context, correlation_id)
            raise CieloError(
                "Tempo limite excedido ao comunicar com a Cielo.",
                code="TIMEOUT",
                correlation_id=correlation_id,
            ) from exc
        except requests.RequestException as exc:
            logger.warning(
                "Cielo: falha de rede em %s (correlation_id=%s)", context, correlation_id, exc_info=True
            )
            raise CieloError(
                sanitize_error_message(str(exc)),
                code="NETWORK_ERROR",
                correlation_id=correlation_id,
            ) from exc

        elapsed_ms = int((time.monotonic() - started) * 1000)
        if not resp.ok:
            err = _error_from_body(resp)
            err.correlation_id = correlation_id
            logger.warning(
                "Cielo: %s recusado HTTP %s code=%s (correlation_id=%s, %sms)",
                context,
                resp.status_code,
                err.code,
                correlation_id,
                elapsed_ms,
            )
            raise err

        try:
            body = resp.json()
        except ValueError as exc:
            raise CieloError(
                f"Resposta inválida da Cielo (HTTP {resp.status_code}).",
                status_code=resp.status_code,
                correlation_id=correlation_id,
            ) from exc

        payment = _parse_payment(body)
        logger.info(
            "Cielo: %s payment_id=%s status=%s return_code=%s (correlation_id=%s, %sms)",
            context,
            payment.payment_id,
            payment.status,
            payment.return_code,
            correlation_id,
            elapsed_ms,
        )
        return payment

    def create_credit_card_payment(
        self,
        *,
        merchant_order_id: str,
        customer: Mapping[str, Any],
        amount_cents: int,
        installments: int,
        card: Mapping[str, Any],
        save_card: bool = True,
    ) -> GatewayPayment:
        validate_card_data(card, amount_cents)
        card_number = only_digits(card.get("card_number"))
        address = customer.get("address") or {}
        identity = only_digits(customer.get("cpf"))

        customer_payload: dict[str, Any] = {
            "Name": customer.get("name") or "",
            "Email": customer.get("email") or "",
        }
        if identity:
            customer_payload["Identity"] = identity
            customer_payload["IdentityType"] = identity_type(identity)
        if address:
            customer_payload["Address"] = {
                "Street": address.get("street") or "",
                "Number": address.get("number") or "",
                "Complement": address.get("complement") or "",
                "ZipCode": clean_zip_code(address.get("zip_code")),
                "City": address.get("city") or "",
                "State": address.get("state") or "",
                "Country": "BRA",
            }

        payload = {
            "MerchantOrderId": merchant_order_id,
            "Customer": customer_payload,
            "Payment": {
                "Type": "CreditCard",
                "Amount": int(amount_cents),
                "Installments": int(installments or 1),
                "Capture": True,
                "SoftDescriptor": "UNIPETPLAN",
                "CreditCard": {
                    "CardNumber": card_number,
                    "Holder": card.get("holder") or "",
                    "ExpirationDate": format_expiration_date(card.get("expiration_date")),
                    "SecurityCode": str(card.get("security_code") or ""),
                    "Brand": card.get("brand") or detect_card_brand(card_number),
                    # token para cobrança recorrente na renovação
                    "SaveCard": bool(save_card),
                },
            },
        }
        payment = self._post_sale(payload, "create_credit_card_payment")
        if not payment.card_last_digits and card_number:
            payment.card_last_digits = card_number[-4:]
        if not payment.card_brand:
            payment.card_brand = payload["Payment"]["CreditCard"]["Brand"]
        return payment

    def create_pix_payment(
        self,
        *,
        merchant_order_id: str,
        customer_name: str,
        cpf: str,
        email: str | None,
        amount_cents: int,
    ) -> GatewayPayment:
        identity = only_digits(cpf)
        if not identity:
            raise CieloError("CPF é obrigatório para PIX.", status_code=400, code="INVALID_IDENTITY")
        if len(identity) == 11 and not validate_cpf(identity):
            raise CieloError("CPF inválido.", status_code=400, code="INVALID_CPF")
        if int(amount_cents) <= 0:
            raise CieloError("Valor inválido.", status_code=400, code="INVALID_AMOUNT")

        payload = {
            "MerchantOrderId": merchant_order_id,
            "Customer": {
                "Name": customer_name,
                "Identity": identity,
                "IdentityType": identity_type(identity),
                "Email": email or "",
            },
            "Payment": {"Type": "Pix", "Amount": int(amount_cents)},
        }
        return self._post_sale(payload, "create_pix_payment")

    def charge_with_token(
        self,
        *,
        merchant_order_id: str,
        customer_name: str,
        email: str | None,
        cpf: str | None,
        amount_cents: int,
        card_token: str,
        brand: str,
    ) -> GatewayPayment:
        if not card_token:
            raise CieloError("Token de cartão ausente.", status_code=400, code="MISSING_TOKEN")

        customer_payload: dict[str, Any] = {"Name": customer_name, "Email": email or ""}
        identity = only_digits(cpf)
        if identity:
            customer_payload["Identity"] = identity
            customer_payload["IdentityType"] = identity_type(identity)

        payload = {
            "MerchantOrderId": merchant_order_id,
            "Customer": customer_payload,
            "Payment": {
                "Type": "CreditCard",
                "Amount": int(amount_cents),
                "Installments": 1,
                "Capture": True,
                "SoftDescriptor": "UNIPETPLAN",
                "CreditCard": {"CardToken": card_token, "Brand": brand or "Visa"},
            },
        }
        return self._post_sale(payload, "charge_with_token")

    def query_payment(self, payment_id: str) -> GatewayPayment:
        """Consulta uma transação (GET idempotente; a sessão repete falhas 5xx)."""
        payment_id = (payment_id or "").strip()
        if not payment_id:
            raise CieloError("PaymentId vazio.", status_code=400, code="INVALID_PAYMENT_ID")

        correlation_id = str(uuid.uuid4())
        url = f"{self.query_url}/1/sales/{payment_id}"
        try:
            resp = self.query_session.get(url, headers=self._headers(correlation_id), timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("Cielo: consulta %s falhou (correlation_id=%s)", payment_id, correlation_id, exc_info=True)
            raise CieloError(
                sanitize_error_message(str(exc)),
                code="NETWORK_ERROR",
                correlation_id=correlation_id,
            ) from exc

        if not resp.ok:
            err = _error_from_body(resp)
            err.correlation_id = correlation_id
            logger.warning(
                "Cielo: consulta %s HTTP %s (correlation_id=%s)", payment_id, resp.status_code, correlation_id
            )
            raise err

        try:
            return _parse_payment(resp.json())
        except ValueError as exc:
            raise CieloError(
                f"Resposta inválida da Cielo (HTTP {resp.status_code}).",
                status_code=resp.status_code,
                correlation_id=correlation_id,
            ) from exc


def get_gateway() -> CieloClient:
    return current_app.extensions["cielo"]
