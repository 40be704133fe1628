from __future__ import annotations

from datetime import datetime

from models.extensions import db


class PendingPayment(db.Model):
    """Tentativa de checkout antes da confirmacao do pagamento.

    Nunca e apagada: serve de trilha de auditoria. Cliente, pets e contrato
    so existem depois que `processed` vira True.
    """

    __tablename__ = "pending_payments"

    id = db.Column(db.Integer, primary_key=True)

    cielo_payment_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    payment_method = db.Column(db.String(20), nullable=False)  # credit_card | pix
    payment_status = db.Column(db.String(20), nullable=False, default="pending")  # approved | pending | rejected

    customer_name = db.Column(db.String(255), nullable=False)
    customer_email = db.Column(db.String(255), nullable=False, index=True)
    customer_cpf = db.Column(db.String(14), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)

    address = db.Column(db.String(255), nullable=True)
    number = db.Column(db.String(20), nullable=True)
    complement = db.Column(db.String(120), nullable=True)
    district = db.Column(db.String(120), nullable=True)
    city = db.Column(db.String(120), nullable=True)
    state = db.Column(db.String(2), nullable=True)
    cep = db.Column(db.String(9), nullable=True)

    plan_id = db.Column(db.Integer, db.ForeignKey("plans.id"), nullable=False)
    billing_period = db.Column(db.String(10), nullable=False, default="monthly")  # monthly | annual
    # valor final cobrado (pos-cupom, pos-desconto multi-pet)
    total_amount = db.Column(db.Numeric(10, 2), nullable=False)

    # JSON serializado (texto) para manter compatibilidade SQLite/Postgres.
    pets_data = db.Column(db.Text, nullable=False, default="[]")

    pix_qr_code = db.Column(db.Text, nullable=True)
    pix_code = db.Column(db.Text, nullable=True)

    seller_id = db.Column(db.String(64), nullable=True)
    coupon_code = db.Column(db.String(40), nullable=True)
    coupon_discount_amount = db.Column(db.Numeric(10, 2), nullable=True)

    # authorizationCode, tid, proofOfSale, returnCode, returnMessage, cardToken...
    metadata_json = db.Column(db.Text, nullable=False, default="{}")

    processed = db.Column(db.Boolean, nullable=False, default=False, index=True)
    processed_at = db.Column(db.DateTime, nullable=True)
    expires_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )
