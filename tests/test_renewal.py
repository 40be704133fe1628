from datetime import datetime, timedelta

from models.contract_model import Contract, ContractInstallment
from models.extensions import db
from services.cielo import CieloError
from services.renewal import (
    NO_TOKEN_REASON,
    AutomaticRenewalService,
    days_overdue,
    find_installments_due_in,
    find_overdue_installments,
    is_overdue,
    should_send_overdue_notice,
)

NOW = datetime(2026, 3, 10, 12, 0)


def _service(app):
    return AutomaticRenewalService.from_app(app)


def test_overdue_requires_one_full_day(app, make_contract):
    _, yesterday = make_contract(due=NOW - timedelta(days=1))
    _, today = make_contract(due=NOW - timedelta(hours=2))
    _, almost = make_contract(due=NOW - timedelta(hours=23, minutes=59))

    assert is_overdue(yesterday, NOW)
    assert not is_overdue(today, NOW)
    assert not is_overdue(almost, NOW)
    assert [i.id for i in find_overdue_installments(NOW)] == [yesterday.id]


def test_paid_installment_is_never_overdue(app, make_contract):
    _, inst = make_contract(due=NOW - timedelta(days=5))
    inst.status = "paid"
    db.session.commit()
    assert not is_overdue(inst, NOW)


def test_overdue_notice_thresholds():
    assert [d for d in range(0, 32) if should_send_overdue_notice(d)] == [1, 3, 7, 15, 30]
    assert days_overdue(NOW - timedelta(days=7, hours=3), NOW) == 7


def test_successful_token_charge(app, gateway, notifications, make_contract):
    contract, inst = make_contract(due=NOW - timedelta(days=5))

    result = _service(app).process_automatic_renewals(NOW)

    assert result.as_dict()["processed"] == 1
    assert result.successful == 1 and result.failed == 0
    db.session.refresh(inst)
    assert inst.status == "paid"
    assert inst.paid_at == NOW
    assert inst.cielo_payment_id == result.attempts[0].payment_id

    nxt = ContractInstallment.query.filter_by(contract_id=contract.id, installment_number=3).one()
    assert nxt.status == "pending"
    assert nxt.due_date == inst.period_end

    kind, call = gateway.calls[0]
    assert kind == "token"
    assert call["card_token"] == "tok-123"
    assert call["amount_cents"] == 8990
    assert call["merchant_order_id"].startswith("RENEWAL-UNIPET-TEST-")
    assert notifications.sent[0]["subject"] == "✅ Renovação UNIPET PLAN confirmada com sucesso"


def test_declined_charge_notifies_with_gateway_message(app, gateway, notifications, make_contract):
    gateway.token_status = 3
    _, inst = make_contract(due=NOW - timedelta(days=5))

    result = _service(app).process_automatic_renewals(NOW)

    assert (result.successful, result.failed) == (0, 1)
    assert result.attempts[0].error == "Cartão Expirado"
    db.session.refresh(inst)
    assert inst.status == "pending"
    assert "Cartão Expirado" in notifications.sent[0]["html"]


def test_gateway_exception_is_a_failed_attempt(app, gateway, notifications, make_contract):
    gateway.errors["token"] = CieloError("Tempo limite excedido", code="TIMEOUT")
    make_contract(due=NOW - timedelta(days=5))

    result = _service(app).process_automatic_renewals(NOW)

    assert result.failed == 1
    assert notifications.sent[0]["subject"] == "⚠️ Atenção: Falha na renovação automática UNIPET PLAN"


def test_without_token_asks_for_manual_payment(app, gateway, notifications, make_contract):
    make_contract(due=NOW - timedelta(days=5), card_token=None)

    result = _service(app).process_automatic_renewals(NOW)

    assert result.failed == 1
    assert not gateway.calls
    assert "Pagamento automático não configurado" in notifications.sent[0]["html"]
    assert NO_TOKEN_REASON.startswith("Pagamento automático")


def test_ineligible_contracts_are_skipped(app, gateway, make_contract):
    make_contract(due=NOW - timedelta(days=5), payment_method="pix")
    make_contract(due=NOW - timedelta(days=5), status="cancelled")
    make_contract(due=NOW - timedelta(days=5), payment_method="cartao")

    result = _service(app).process_automatic_renewals(NOW)

    assert result.processed == 3
    assert len(result.attempts) == 1
    assert result.successful == 1


def test_one_failure_does_not_abort_the_batch(app, gateway, make_contract, monkeypatch):
    make_contract(due=NOW - timedelta(days=6))
    make_contract(due=NOW - timedelta(days=5))
    original = gateway.charge_with_token
    calls = {"n": 0}

    def flaky(**kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("conexao perdida")
        return original(**kwargs)

    monkeypatch.setattr(gateway, "charge_with_token", flaky)

    result = _service(app).process_automatic_renewals(NOW)

    assert (result.processed, result.successful, result.failed) == (2, 1, 1)
    assert result.attempts[0].error == "conexao perdida"


def test_upcoming_due_reminders_match_calendar_day(app, notifications, make_contract):
    make_contract(due=datetime(2026, 3, 13, 23, 30))
    make_contract(due=datetime(2026, 3, 13, 0, 0))
    make_contract(due=datetime(2026, 3, 14, 9, 0))

    assert len(find_installments_due_in(3, NOW)) == 2
    sent = _service(app).send_upcoming_due_notifications(3, NOW)

    assert sent == 2
    assert notifications.sent[0]["subject"] == "⏰ Lembrete: Pagamento UNIPET PLAN vence em 3 dia(s)"


def test_overdue_notifications_only_on_thresholds(app, notifications, make_contract):
    make_contract(due=NOW - timedelta(days=7))
    make_contract(due=NOW - timedelta(days=4))
    make_contract(due=NOW - timedelta(days=2))

    sent = _service(app).send_overdue_notifications(NOW)

    assert sent == 1
    assert "(7 dia(s))" in notifications.sent[0]["subject"]


def test_contract_status_sweep(app, make_contract):
    suspended, _ = make_contract(due=NOW - timedelta(days=20))
    cancelled, _ = make_contract(due=NOW - timedelta(days=70))
    grace, _ = make_contract(due=NOW - timedelta(days=10))
    recovered, _ = make_contract(due=NOW + timedelta(days=10), status="suspended")
    untouched, _ = make_contract(due=NOW - timedelta(days=90), status="cancelled")

    changed = _service(app).update_contract_statuses(NOW)

    assert changed == 3
    statuses = {c.id: c.status for c in Contract.query.all()}
    assert statuses[suspended.id] == "suspended"
    assert statuses[cancelled.id] == "cancelled"
    assert statuses[grace.id] == "active"
    assert statuses[recovered.id] == "active"
    assert statuses[untouched.id] == "cancelled"


def test_unexpected_adapter_error_still_notifies(app, gateway, notifications, make_contract):
    gateway.errors["token"] = ValueError("resposta inesperada")
    _, inst = make_contract(due=NOW - timedelta(days=5))

    result = _service(app).process_automatic_renewals(NOW)

    assert (result.successful, result.failed) == (0, 1)
    assert result.attempts[0].error == "resposta inesperada"
    assert len(notifications.sent) == 1
    assert notifications.sent[0]["subject"] == "⚠️ Atenção: Falha na renovação automática UNIPET PLAN"
    assert "efetue o pagamento manualmente" in notifications.sent[0]["html"]
    db.session.refresh(inst)
    assert inst.status == "pending"
