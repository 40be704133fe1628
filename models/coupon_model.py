from __future__ import annotations

from datetime import datetime

from models.extensions import db


class Coupon(db.Model):
    __tablename__ = "coupons"

    id = db.Column(db.Integer, primary_key=True)

    # sempre em maiusculas
    code = db.Column(db.String(40), unique=True, nullable=False, index=True)
    type = db.Column(db.String(20), nullable=False)  # percentage | fixed_value
    # percentual (0-100) ou valor fixo em reais
    value = db.Column(db.Numeric(10, 2), nullable=False)

    usage_limit = db.Column(db.Integer, nullable=True)  # null = ilimitado
    usage_count = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    valid_from = db.Column(db.DateTime, nullable=True)
    valid_until = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )
