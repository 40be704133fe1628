from __future__ import annotations

from datetime import datetime

from models.extensions import db


class Plan(db.Model):
    """Plano de saude pet. Apenas os campos consumidos pelo checkout."""

    __tablename__ = "plans"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), unique=True, nullable=False)

    # preco cotado por mes; COMFORT/PLATINUM sao cobrados anualmente (x12)
    base_price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
