from datetime import datetime, timedelta

from conftest import checkout_body

from models.client_model import Client
from models.contract_model import Contract, ContractInstallment
from models.pending_payment_model import PendingPayment
from services.cielo import CieloError


def _notify(client, payment_id, change_type=1):
    return client.post("/api/webhooks/cielo", json={"PaymentId": payment_id, "ChangeType": change_type})


def _pix_checkout(client, plan):
    resp = client.post("/api/checkout/process", json=checkout_body(plan.id, "pix"))
    assert resp.status_code == 200
    return resp.get_json()["payment"]["paymentId"]


def test_pix_confirmation_materializes_exactly_once(client, gateway, make_plan):
    plan = make_plan()
    payment_id = _pix_checkout(client, plan)
    assert Contract.query.count() == 0

    first = _notify(client, payment_id)
    assert first.status_code == 200
    assert first.get_json()["result"] == "materialized"

    second = _notify(client, payment_id)
    assert second.status_code == 200
    assert second.get_json()["result"] == "already_processed"

    assert Client.query.count() == 1
    assert Contract.query.count() == 1
    contract = Contract.query.one()
    assert contract.payment_method == "pix"
    assert contract.cielo_card_token is None
    pending = PendingPayment.query.one()
    assert pending.processed is True
    assert pending.payment_status == "approved"


def test_declined_pix_marks_pending_rejected(client, gateway, make_plan):
    plan = make_plan()
    payment_id = _pix_checkout(client, plan)
    gateway.query_statuses[payment_id] = 13

    resp = _notify(client, payment_id)

    assert resp.get_json()["result"] == "rejected"
    assert PendingPayment.query.one().payment_status == "rejected"
    assert Contract.query.count() == 0


def test_still_pending_status_is_only_recorded(client, gateway, make_plan):
    plan = make_plan()
    payment_id = _pix_checkout(client, plan)
    gateway.query_statuses[payment_id] = 12

    assert _notify(client, payment_id).get_json()["result"] == "status_recorded"
    assert PendingPayment.query.one().processed is False


def test_approved_renewal_payment_pays_installment(client, make_contract):
    contract, installment = make_contract(
        due=datetime.utcnow() - timedelta(days=2), installment_payment_id="renew-1"
    )

    resp = _notify(client, "renew-1")

    assert resp.get_json()["result"] == "installment_paid"
    numbers = [
        (i.installment_number, i.status)
        for i in ContractInstallment.query.filter_by(contract_id=contract.id)
        .order_by(ContractInstallment.installment_number)
        .all()
    ]
    assert numbers == [(1, "paid"), (2, "paid"), (3, "pending")]

    assert _notify(client, "renew-1").get_json()["result"] == "already_processed"
    assert ContractInstallment.query.filter_by(contract_id=contract.id).count() == 3


def test_unmatched_approved_payment(client):
    assert _notify(client, "desconhecido").get_json()["result"] == "unmatched"


def test_recurrency_and_chargeback_are_logged(client, gateway):
    assert _notify(client, "pay-1", change_type=2).get_json()["result"] == "recurrency_logged"
    assert _notify(client, "pay-1", change_type=3).get_json()["result"] == "chargeback_logged"
    assert _notify(client, "pay-1", change_type=9).get_json()["result"] == "ignored"
    assert not [c for c in gateway.calls if c[0] == "query"]


def test_gateway_outage_asks_for_redelivery(client, gateway):
    gateway.errors["query"] = CieloError("HTTP 503", status_code=503, code=None)
    resp = _notify(client, "pay-1")
    assert resp.status_code == 502
    assert resp.get_json()["error"] == "gateway_unavailable"
