from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from app import create_app
from config import Config
from models.client_model import Client
from models.contract_model import Contract, ContractInstallment
from models.extensions import db
from models.pet_model import Pet
from models.plan_model import Plan
from services.cielo import CieloError, GatewayPayment
from services.notification_service import NotificationService

VALID_CPF = "52998224725"


class FakeCieloClient:
    """Gateway em memória: status configuráveis e registro das chamadas."""

    configured = True

    def __init__(self) -> None:
        self.card_status = 2
        self.pix_status = 12
        self.token_status = 2
        self.query_statuses: dict[str, int | None] = {}
        self.errors: dict[str, Exception] = {}
        self.calls: list[tuple[str, dict]] = []
        self._seq = 0

    def _next_id(self) -> str:
        self._seq += 1
        return f"pay-{self._seq:04d}"

    def _maybe_raise(self, op: str) -> None:
        exc = self.errors.get(op)
        if exc is not None:
            raise exc

    def create_credit_card_payment(self, **kwargs) -> GatewayPayment:
        self.calls.append(("card", kwargs))
        self._maybe_raise("card")
        approved = self.card_status == 2
        return GatewayPayment(
            payment_id=self._next_id(),
            status=self.card_status,
            return_code="00" if approved else "05",
            return_message="Transacao autorizada" if approved else "Não Autorizada",
            authorization_code="123456" if approved else None,
            tid="TID0001",
            proof_of_sale="PS0001",
            card_token="tok-123" if approved else None,
            card_brand="Visa",
            card_last_digits=kwargs["card"]["card_number"][-4:],
        )

    def create_pix_payment(self, **kwargs) -> GatewayPayment:
        self.calls.append(("pix", kwargs))
        self._maybe_raise("pix")
        return GatewayPayment(
            payment_id=self._next_id(),
            status=self.pix_status,
            return_code="0",
            return_message="Pix gerado",
            qr_code_base64="iVBORw0KGgoAAAANSUhEUg==",
            qr_code_string="00020101021226880014br.gov.bcb.pix",
        )

    def charge_with_token(self, **kwargs) -> GatewayPayment:
        self.calls.append(("token", kwargs))
        self._maybe_raise("token")
        approved = self.token_status == 2
        return GatewayPayment(
            payment_id=self._next_id(),
            status=self.token_status,
            return_code="00" if approved else "57",
            return_message="Transacao autorizada" if approved else "Cartão Expirado",
        )

    def query_payment(self, payment_id: str) -> GatewayPayment:
        self.calls.append(("query", {"payment_id": payment_id}))
        self._maybe_raise("query")
        status = self.query_statuses.get(payment_id, 2)
        if status is None:
            raise CieloError("Not found", status_code=404)
        return GatewayPayment(payment_id=payment_id, status=status)


class RecordingNotificationService(NotificationService):
    def __init__(self) -> None:
        super().__init__(app_base_url="https://unipet.test", send_enabled=False)
        self.sent: list[dict] = []

    def send_email(self, to, subject, html, *, client_name=""):
        self.sent.append({"to": to, "subject": subject, "html": html})
        return True


@pytest.fixture
def app(tmp_path):
    app = create_app(
        Config,
        overrides={
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'test.db'}",
            "SQLALCHEMY_ENGINE_OPTIONS": {},
            "IS_PRODUCTION": False,
            "CIELO_WEBHOOK_SECRET": "",
            "CIELO_WEBHOOK_ALLOWED_IPS": "",
            "WEBHOOK_RATE_LIMIT": 100,
            "EMAIL_SEND_ENABLED": False,
            "APP_BASE_URL": "https://unipet.test",
            "ENABLE_CRON_JOBS": True,
        },
    )
    app.extensions["cielo"] = FakeCieloClient()
    app.extensions["notifications"] = RecordingNotificationService()
    with app.app_context():
        yield app
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def gateway(app) -> FakeCieloClient:
    return app.extensions["cielo"]


@pytest.fixture
def notifications(app) -> RecordingNotificationService:
    return app.extensions["notifications"]


@pytest.fixture
def make_plan(app):
    def _make(name="BASIC", base_price="100.00", is_active=True):
        plan = Plan(name=name, base_price=Decimal(base_price), is_active=is_active)
        db.session.add(plan)
        db.session.commit()
        return plan

    return _make


@pytest.fixture
def make_contract(app, make_plan):
    """Contrato com uma parcela 2 pendente vencendo em `due`."""

    counter = {"n": 0}

    def _make(
        *,
        due: datetime,
        payment_method="credit_card",
        status="active",
        card_token: str | None = "tok-123",
        plan: Plan | None = None,
        installment_payment_id: str | None = None,
    ):
        counter["n"] += 1
        n = counter["n"]
        plan = plan or make_plan(name=f"BASIC {n}", base_price="89.90")
        client = Client(full_name=f"Cliente {n}", email=f"cliente{n}@example.test", cpf=VALID_CPF)
        db.session.add(client)
        db.session.flush()
        pet = Pet(client_id=client.id, name=f"Rex {n}", plan_id=plan.id)
        db.session.add(pet)
        db.session.flush()
        contract = Contract(
            client_id=client.id,
            pet_id=pet.id,
            plan_id=plan.id,
            contract_number=f"UNIPET-TEST-{n}",
            status=status,
            billing_period="monthly",
            monthly_amount=Decimal("89.90"),
            payment_method=payment_method,
            cielo_card_token=card_token,
            card_brand="Visa" if card_token else None,
        )
        db.session.add(contract)
        db.session.flush()
        start = due - timedelta(days=30)
        db.session.add(
            ContractInstallment(
                contract_id=contract.id,
                installment_number=1,
                due_date=start,
                period_start=start,
                period_end=due,
                amount=Decimal("89.90"),
                status="paid",
                paid_at=start,
            )
        )
        installment = ContractInstallment(
            contract_id=contract.id,
            installment_number=2,
            due_date=due,
            period_start=due,
            period_end=due + timedelta(days=30),
            amount=Decimal("89.90"),
            status="pending",
            cielo_payment_id=installment_payment_id,
        )
        db.session.add(installment)
        db.session.commit()
        return contract, installment

    return _make


def checkout_body(plan_id, method="credit_card", *, pets=None, coupon=None, email="Maria@Example.com"):
    body = {
        "paymentData": {
            "customer": {"name": "Maria Silva", "email": email, "cpf": "529.982.247-25"},
            "payment": {
                "cardNumber": "4111 1111 1111 1111",
                "holder": "MARIA SILVA",
                "expirationDate": "12/2099",
                "securityCode": "123",
                "installments": 1,
            },
            "pets": pets if pets is not None else [{"name": "Rex", "species": "Cão", "breed": "SRD", "age": 3}],
        },
        "planData": {"planId": plan_id},
        "paymentMethod": method,
        "addressData": {
            "phone": "(11) 98765-4321",
            "address": "Rua das Flores",
            "number": "100",
            "district": "Centro",
            "city": "São Paulo",
            "state": "sp",
            "cep": "01310-100",
        },
    }
    if coupon:
        body["coupon"] = coupon
    return body
