from __future__ import annotations

from datetime import datetime

from models.extensions import db


class Contract(db.Model):
    __tablename__ = "contracts"

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    pet_id = db.Column(db.Integer, db.ForeignKey("pets.id"), nullable=False, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("plans.id"), nullable=False)
    seller_id = db.Column(db.String(64), nullable=True)

    contract_number = db.Column(db.String(60), unique=True, nullable=False)
    # active | inactive | suspended | cancelled | pending
    status = db.Column(db.String(20), nullable=False, default="active")
    start_date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    billing_period = db.Column(db.String(10), nullable=False, default="monthly")
    monthly_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    annual_amount = db.Column(db.Numeric(10, 2), nullable=True)

    payment_method = db.Column(db.String(20), nullable=False)  # credit_card | pix
    cielo_payment_id = db.Column(db.String(64), nullable=True, index=True)

    # comprovante da transacao original
    proof_of_sale = db.Column(db.String(40), nullable=True)
    authorization_code = db.Column(db.String(40), nullable=True)
    tid = db.Column(db.String(40), nullable=True)
    received_date = db.Column(db.DateTime, nullable=True)

    # Sem token nao ha cobranca automatica na renovacao.
    cielo_card_token = db.Column(db.String(100), nullable=True)
    card_brand = db.Column(db.String(20), nullable=True)
    card_last_digits = db.Column(db.String(4), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    pet = db.relationship("Pet", lazy="joined")
    plan = db.relationship("Plan", lazy="joined")
    installments = db.relationship(
        "ContractInstallment",
        backref="contract",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="ContractInstallment.installment_number",
    )


class ContractInstallment(db.Model):
    __tablename__ = "contract_installments"

    id = db.Column(db.Integer, primary_key=True)
    contract_id = db.Column(db.Integer, db.ForeignKey("contracts.id"), nullable=False, index=True)

    installment_number = db.Column(db.Integer, nullable=False)  # 1, 2, 3...
    due_date = db.Column(db.DateTime, nullable=False)
    period_start = db.Column(db.DateTime, nullable=False)
    period_end = db.Column(db.DateTime, nullable=False)
    amount = db.Column(db.Numeric(10, 2), nullable=False)

    status = db.Column(db.String(20), nullable=False, default="pending")  # pending | paid
    paid_at = db.Column(db.DateTime, nullable=True)
    payment_method = db.Column(db.String(20), nullable=True)
    cielo_payment_id = db.Column(db.String(64), nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        db.UniqueConstraint(
            "contract_id", "installment_number", name="contract_installments_number_unique"
        ),
    )
