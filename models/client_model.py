from __future__ import annotations

from datetime import datetime

from models.extensions import db


class Client(db.Model):
    __tablename__ = "clients"

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    phone = db.Column(db.String(32), nullable=False, default="")
    # Armazenamos apenas dígitos para facilitar validação/sanitização.
    cpf = db.Column(db.String(14), nullable=True, index=True)
    # hash do CPF para o login do portal (email + CPF)
    cpf_hash = db.Column(db.String(255), nullable=True)

    cep = db.Column(db.String(9), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    number = db.Column(db.String(20), nullable=True)
    complement = db.Column(db.String(120), nullable=True)
    district = db.Column(db.String(120), nullable=True)
    city = db.Column(db.String(120), nullable=True)
    state = db.Column(db.String(2), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    pets = db.relationship(
        "Pet",
        backref="client",
        lazy=True,
        cascade="all, delete-orphan",
    )
    contracts = db.relationship(
        "Contract",
        backref="client",
        lazy=True,
        cascade="all, delete-orphan",
    )
