from datetime import datetime, timedelta
from decimal import Decimal

from models.extensions import db
from services.pending_payment_store import (
    PendingPaymentData,
    claim_for_processing,
    create_pending_payment,
    get_by_gateway_payment_id,
    get_pending_payment,
    is_expired,
    list_unprocessed,
    pets_of,
    pix_expiration,
    to_summary,
)

NOW = datetime(2026, 3, 10, 12, 0)


def _create(make_plan, payment_id="pay-1", method="pix", **kwargs):
    plan = make_plan(name=f"BASIC {payment_id}")
    return create_pending_payment(
        PendingPaymentData(
            cielo_payment_id=payment_id,
            payment_method=method,
            payment_status="pending",
            customer_name="Maria Silva",
            customer_email="maria@example.com",
            plan_id=plan.id,
            billing_period="monthly",
            total_amount=Decimal("100.00"),
            pets=[{"name": "Rex"}],
            address={"city": "São Paulo", "cep": ""},
            pix_qr_code="qr" if method == "pix" else None,
            pix_code="code" if method == "pix" else None,
            **kwargs,
        )
    )


def test_lookup_by_id_and_gateway_id(app, make_plan):
    pending = _create(make_plan)

    assert get_pending_payment(pending.id) is pending
    assert get_by_gateway_payment_id("pay-1") is pending
    assert get_by_gateway_payment_id("outro") is None
    assert get_pending_payment(0) is None
    assert pending.city == "São Paulo"
    assert pending.cep is None
    assert pets_of(pending) == [{"name": "Rex"}]


def test_claim_is_won_once(app, make_plan):
    pending = _create(make_plan)

    assert claim_for_processing(pending.id, NOW) is True
    assert claim_for_processing(pending.id, NOW) is False
    db.session.commit()
    db.session.refresh(pending)
    assert pending.processed is True
    assert pending.processed_at == NOW


def test_list_unprocessed_skips_materialized(app, make_plan):
    first = _create(make_plan, "pay-1")
    _create(make_plan, "pay-2")
    claim_for_processing(first.id)
    db.session.commit()

    assert [p.cielo_payment_id for p in list_unprocessed()] == ["pay-2"]


def test_pix_expiration_and_summary(app, make_plan):
    pending = _create(make_plan, expires_at=pix_expiration(NOW, hours=24))

    assert not is_expired(pending, NOW + timedelta(hours=23))
    assert is_expired(pending, NOW + timedelta(hours=25))

    summary = to_summary(pending)
    assert summary["amount"] == "100.00"
    assert summary["pixCode"] == "code"
    assert summary["expired"] is True


def test_card_without_expiry_never_expires(app, make_plan):
    pending = _create(make_plan, method="credit_card")
    assert not is_expired(pending, NOW + timedelta(days=365))
    assert "pixCode" not in to_summary(pending)


def test_pending_cli_lists_unprocessed(app, make_plan):
    _create(make_plan, "pay-9")
    result = app.test_cli_runner().invoke(args=["jobs", "pending"])
    assert result.exit_code == 0
    assert '"paymentId": "pay-9"' in result.output
