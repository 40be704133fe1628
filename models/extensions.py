from __future__ import annotations

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import text

db = SQLAlchemy()


def _column_exists_sqlite(conn, table: str, column: str) -> bool:
    rows = conn.execute(text(f"PRAGMA table_info({table})")).mappings().all()
    return any(r.get("name") == column for r in rows)


def _column_exists_postgres(conn, table: str, column: str) -> bool:
    rows = conn.execute(
        text(
            """
            SELECT 1
              FROM information_schema.columns
             WHERE table_schema = 'public'
               AND table_name = :table
               AND column_name = :column
             LIMIT 1
            """
        ),
        {"table": table, "column": column},
    ).fetchall()
    return len(rows) > 0


# Colunas adicionadas depois da primeira versao do schema (tokenizacao de cartao
# e auditoria de processamento). create_all nao altera tabelas existentes.
_LATE_COLUMNS = (
    ("contracts", "cielo_card_token", "VARCHAR(100)"),
    ("contracts", "card_brand", "VARCHAR(20)"),
    ("contracts", "card_last_digits", "VARCHAR(4)"),
    ("pending_payments", "processed_at", "TIMESTAMP"),
)


def _migrate_schema(conn, engine_name: str) -> None:
    """Migração leve (SQLite/Postgres) sem Alembic."""
    for table, column, ddl in _LATE_COLUMNS:
        if engine_name == "sqlite":
            if not _column_exists_sqlite(conn, table, column):
                conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}"))
        elif engine_name in {"postgresql", "postgres"}:
            if not _column_exists_postgres(conn, table, column):
                conn.execute(
                    text(f"ALTER TABLE public.{table} ADD COLUMN IF NOT EXISTS {column} {ddl}")
                )


def init_db(app) -> None:
    db.init_app(app)
    with app.app_context():
        # garante que todas as tabelas entram no metadata antes do create_all
        from models import (  # noqa: F401
            client_model,
            contract_model,
            coupon_model,
            pending_payment_model,
            pet_model,
            plan_model,
        )

        db.create_all()

        engine_name = db.engine.name
        with db.engine.begin() as conn:
            if engine_name == "sqlite":
                conn.execute(text("PRAGMA busy_timeout=5000"))
            _migrate_schema(conn, engine_name)
