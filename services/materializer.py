from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from werkzeug.security import generate_password_hash

from models.client_model import Client
from models.contract_model import Contract
from models.extensions import db
from models.pending_payment_model import PendingPayment
from models.pet_model import Pet
from models.plan_model import Plan
from services.coupons import increment_coupon_usage
from services.document_validation import normalize_cpf, normalize_email
from services.errors import MaterializationError
from services.installments import create_first_installments
from services.pending_payment_store import claim_for_processing, metadata_of, pets_of
from services.pricing import contract_amounts

logger = logging.getLogger(__name__)


@dataclass
class MaterializationResult:
    pending_payment_id: int
    created: bool
    client: Client | None = None
    pets: list[Pet] = field(default_factory=list)
    contracts: list[Contract] = field(default_factory=list)


def _normalize_name(value: str | None) -> str:
    text = unicodedata.normalize("NFKD", str(value or "")).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"\s+", " ", text).strip().lower()


def _decimal_or_none(value: Any) -> Decimal | None:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value).replace(",", "."))
    except (InvalidOperation, ValueError):
        return None


def _find_client(email: str, cpf: str) -> Client | None:
    client = Client.query.filter_by(email=email).first() if email else None
    if client is None and cpf:
        client = Client.query.filter_by(cpf=cpf).first()
    return client


def _upsert_client(pending: PendingPayment) -> Client:
    email = normalize_email(pending.customer_email)
    cpf = normalize_cpf(pending.customer_cpf)
    client = _find_client(email, cpf)

    if client is None:
        client = Client(
            full_name=(pending.customer_name or "").strip(),
            email=email,
            phone=pending.customer_phone or "",
            cpf=cpf or None,
            cpf_hash=generate_password_hash(cpf) if cpf else None,
        )
        db.session.add(client)
        logger.info("Materializacao: novo cliente %s", email)
    else:
        # só completa o que estiver vazio; nunca sobrescreve cadastro existente
        if not client.phone and pending.customer_phone:
            client.phone = pending.customer_phone
        if not client.cpf and cpf:
            client.cpf = cpf
            client.cpf_hash = generate_password_hash(cpf)

    for key in ("cep", "address", "number", "complement", "district", "city", "state"):
        value = getattr(pending, key)
        if value and not getattr(client, key):
            setattr(client, key, value)

    db.session.flush()
    return client


def _reusable_pet(client: Client, key: str, plan: Plan, taken: set[int]) -> Pet | None:
    """Pet já cadastrado com o mesmo nome e sem contrato ativo neste plano."""
    for pet in Pet.query.filter_by(client_id=client.id).order_by(Pet.id.asc()).all():
        if pet.id in taken or _normalize_name(pet.name) != key:
            continue
        busy = Contract.query.filter(
            Contract.pet_id == pet.id,
            Contract.plan_id == plan.id,
            Contract.status != "cancelled",
        ).first()
        if busy is None:
            return pet
    return None


def _attach_pets(client: Client, pets_payload: list[dict[str, Any]], plan: Plan) -> list[Pet]:
    # um pet por item do carrinho, na ordem do payload
    pets: list[Pet] = []
    taken: set[int] = set()

    for payload in pets_payload or [{}]:
        name = (payload.get("name") or "").strip() or "Pet"
        pet = _reusable_pet(client, _normalize_name(name), plan, taken)
        if pet is None:
            pet = Pet(
                client_id=client.id,
                name=name,
                species=payload.get("species") or "Cão",
                breed=payload.get("breed") or None,
                age=str(payload.get("age")) if payload.get("age") not in (None, "") else None,
                sex=payload.get("sex") or None,
                castrated=bool(payload.get("castrated")),
                weight=_decimal_or_none(payload.get("weight")),
            )
            db.session.add(pet)
        pet.plan_id = plan.id
        pet.is_active = True
        db.session.flush()
        taken.add(pet.id)
        pets.append(pet)

    return pets


def _contract_number(pending: PendingPayment, pet: Pet, now: datetime) -> str:
    return f"UNIPET-{now:%Y%m%d%H%M%S}-{pending.id}-{pet.id}"


def _build_contracts(
    pending: PendingPayment, client: Client, pets: list[Pet], plan: Plan, now: datetime
) -> list[Contract]:
    meta = metadata_of(pending)
    contracts: list[Contract] = []

    for index, pet in enumerate(pets):
        monthly, annual = contract_amounts(plan.name, plan.base_price, index)
        contract = Contract(
            client_id=client.id,
            pet_id=pet.id,
            plan_id=plan.id,
            seller_id=pending.seller_id,
            contract_number=_contract_number(pending, pet, now),
            status="active",
            start_date=now,
            billing_period=pending.billing_period or "monthly",
            monthly_amount=monthly,
            annual_amount=annual,
            payment_method=pending.payment_method,
            cielo_payment_id=pending.cielo_payment_id,
            proof_of_sale=meta.get("proofOfSale"),
            authorization_code=meta.get("authorizationCode"),
            tid=meta.get("tid"),
            received_date=now,
            cielo_card_token=meta.get("cardToken"),
            card_brand=meta.get("cardBrand"),
            card_last_digits=meta.get("cardLastDigits"),
        )
        db.session.add(contract)
        db.session.flush()
        create_first_installments(
            contract,
            payment_id=pending.cielo_payment_id,
            payment_method=pending.payment_method,
            now=now,
        )
        contracts.append(contract)

    return contracts


def materialize_pending_payment(
    pending: PendingPayment,
    *,
    correlation_id: str | None = None,
    now: datetime | None = None,
) -> MaterializationResult:
    """Transforma um pagamento confirmado em cliente, pets, contratos e parcelas.

    Tudo ocorre em uma única transação. Uma segunda chamada para o mesmo
    pagamento (webhook repetido, corrida com o checkout) não cria nada.
    """
    now = now or datetime.utcnow()

    if pending.processed:
        logger.info(
            "Materializacao ignorada: pagamento %s ja processado (correlation_id=%s)",
            pending.cielo_payment_id,
            correlation_id,
        )
        client = _find_client(normalize_email(pending.customer_email), normalize_cpf(pending.customer_cpf))
        return MaterializationResult(pending.id, created=False, client=client)

    plan = db.session.get(Plan, pending.plan_id)
    if plan is None:
        raise MaterializationError(
            "Plano não encontrado para o pagamento",
            details=f"plan_id={pending.plan_id}",
        )

    try:
        if not claim_for_processing(pending.id, now):
            db.session.rollback()
            logger.info(
                "Materializacao concorrente perdeu a corrida: %s (correlation_id=%s)",
                pending.cielo_payment_id,
                correlation_id,
            )
            client = _find_client(normalize_email(pending.customer_email), normalize_cpf(pending.customer_cpf))
            return MaterializationResult(pending.id, created=False, client=client)

        pending.payment_status = "approved"
        client = _upsert_client(pending)
        pets = _attach_pets(client, pets_of(pending), plan)
        contracts = _build_contracts(pending, client, pets, plan, now)
        if pending.coupon_code:
            increment_coupon_usage(pending.coupon_code)

        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        logger.error(
            "Materializacao falhou para %s (correlation_id=%s)",
            pending.cielo_payment_id,
            correlation_id,
            exc_info=True,
        )
        raise MaterializationError(details=str(exc)) from exc

    logger.info(
        "Materializacao concluida: pagamento=%s cliente=%s contratos=%s (correlation_id=%s)",
        pending.cielo_payment_id,
        client.id,
        len(contracts),
        correlation_id,
    )
    return MaterializationResult(pending.id, created=True, client=client, pets=pets, contracts=contracts)
