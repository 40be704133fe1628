from __future__ import annotations

from datetime import datetime

from models.extensions import db


class Pet(db.Model):
    __tablename__ = "pets"

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)

    name = db.Column(db.String(120), nullable=False)
    species = db.Column(db.String(40), nullable=False, default="Cão")
    breed = db.Column(db.String(120), nullable=True)
    age = db.Column(db.String(20), nullable=True)
    sex = db.Column(db.String(20), nullable=True)
    castrated = db.Column(db.Boolean, nullable=False, default=False)
    weight = db.Column(db.Numeric(5, 2), nullable=True)

    # preenchido quando o pet entra em um contrato
    plan_id = db.Column(db.Integer, db.ForeignKey("plans.id"), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )
