import json
from decimal import Decimal

import pytest

from models.client_model import Client
from models.contract_model import Contract, ContractInstallment
from models.coupon_model import Coupon
from models.extensions import db
from models.pet_model import Pet
from services.errors import MaterializationError
from services.materializer import materialize_pending_payment
from services.pending_payment_store import (
    PendingPaymentData,
    claim_for_processing,
    create_pending_payment,
)


def _pending(plan, *, payment_id="pay-m1", pets=None, method="credit_card", coupon=None, email="joao@example.test"):
    return create_pending_payment(
        PendingPaymentData(
            cielo_payment_id=payment_id,
            payment_method=method,
            payment_status="approved",
            customer_name="João Souza",
            customer_email=email,
            customer_cpf="52998224725",
            customer_phone="11999998888",
            plan_id=plan.id,
            billing_period="annual" if "COMFORT" in plan.name else "monthly",
            total_amount=Decimal("100.00"),
            pets=pets if pets is not None else [{"name": "Thor", "species": "Cão"}],
            coupon_code=coupon,
            metadata={"cardToken": "tok-9", "cardBrand": "Master", "tid": "T9"},
        )
    )


def test_second_call_is_a_noop(app, make_plan):
    pending = _pending(make_plan())

    first = materialize_pending_payment(pending, correlation_id="c1")
    second = materialize_pending_payment(pending, correlation_id="c2")

    assert first.created is True
    assert second.created is False
    assert second.client.id == first.client.id
    assert Client.query.count() == 1
    assert Contract.query.count() == 1


def test_contract_and_installments(app, make_plan):
    pending = _pending(make_plan(name="COMFORT", base_price="50.00"))

    result = materialize_pending_payment(pending)

    contract = result.contracts[0]
    assert contract.billing_period == "annual"
    assert Decimal(str(contract.annual_amount)) == Decimal("600.00")
    assert contract.cielo_card_token == "tok-9"
    assert contract.card_brand == "Master"
    assert contract.tid == "T9"
    assert contract.contract_number.startswith("UNIPET-")

    first, second = ContractInstallment.query.order_by(ContractInstallment.installment_number).all()
    assert first.status == "paid"
    assert first.cielo_payment_id == "pay-m1"
    assert (first.period_end - first.period_start).days == 365
    assert second.status == "pending"
    assert Decimal(str(second.amount)) == Decimal("600.00")


def test_claim_is_check_and_set(app, make_plan):
    pending = _pending(make_plan())
    assert claim_for_processing(pending.id) is True
    db.session.commit()
    assert claim_for_processing(pending.id) is False


def test_failure_rolls_back_and_keeps_flag(app, make_plan, monkeypatch):
    pending = _pending(make_plan())

    def boom(*args, **kwargs):
        raise RuntimeError("disco cheio")

    monkeypatch.setattr("services.materializer.create_first_installments", boom)

    with pytest.raises(MaterializationError) as info:
        materialize_pending_payment(pending)

    assert "disco cheio" in info.value.details
    db.session.refresh(pending)
    assert pending.processed is False
    assert Client.query.count() == 0
    assert Contract.query.count() == 0

    monkeypatch.undo()
    assert materialize_pending_payment(pending).created is True


def test_missing_plan(app, make_plan):
    plan = make_plan()
    pending = _pending(plan)
    pending.plan_id = 9999
    db.session.commit()

    with pytest.raises(MaterializationError):
        materialize_pending_payment(pending)
    assert pending.processed is False


def test_reuses_client_by_cpf_and_pet_by_name(app, make_plan):
    plan = make_plan()
    existing = Client(full_name="João", email="outro@example.test", cpf="52998224725", phone="")
    db.session.add(existing)
    db.session.flush()
    db.session.add(Pet(client_id=existing.id, name="thor "))
    db.session.commit()

    result = materialize_pending_payment(_pending(plan, pets=[{"name": "Thor"}, {"name": "Luna"}]))

    assert result.client.id == existing.id
    assert Client.query.count() == 1
    assert sorted(p.name for p in Pet.query.all()) == ["Luna", "thor "]
    assert all(p.plan_id == plan.id for p in Pet.query.all())
    assert Contract.query.count() == 2


def test_coupon_usage_counted_once(app, make_plan):
    db.session.add(Coupon(code="VOLTA", type="fixed_value", value=Decimal("5"), usage_count=0))
    db.session.commit()
    pending = _pending(make_plan(), coupon="VOLTA")

    materialize_pending_payment(pending)
    materialize_pending_payment(pending)

    assert Coupon.query.one().usage_count == 1


def test_empty_pets_payload_creates_one_pet(app, make_plan):
    pending = _pending(make_plan(), pets=[])
    pending.pets_data = json.dumps([])
    db.session.commit()

    result = materialize_pending_payment(pending)

    assert len(result.pets) == 1
    assert Contract.query.count() == 1


def test_same_named_pets_each_get_a_contract(app, make_plan):
    result = materialize_pending_payment(
        _pending(make_plan(), pets=[{"name": "Thor", "species": "Cão"}, {"name": "thor", "species": "Gato"}])
    )

    assert len(result.pets) == 2
    assert len({p.id for p in result.pets}) == 2
    assert sorted(p.species for p in Pet.query.all()) == ["Cão", "Gato"]
    assert Contract.query.count() == 2


def test_unnamed_pets_are_not_merged(app, make_plan):
    result = materialize_pending_payment(_pending(make_plan(), pets=[{"species": "Cão"}, {"species": "Gato"}]))

    assert [p.name for p in result.pets] == ["Pet", "Pet"]
    assert Pet.query.count() == 2
    assert Contract.query.count() == 2


def test_pet_with_active_contract_on_plan_is_not_reused(app, make_plan):
    plan = make_plan()
    materialize_pending_payment(_pending(plan, payment_id="pay-a"))

    result = materialize_pending_payment(_pending(plan, payment_id="pay-b"))

    assert result.created is True
    assert Pet.query.count() == 2
    assert Contract.query.count() == 2
    assert result.client.id == Client.query.one().id


def test_lost_claim_still_returns_client(app, make_plan, monkeypatch):
    existing = Client(full_name="João", email="joao@example.test", cpf="52998224725")
    db.session.add(existing)
    db.session.commit()
    pending = _pending(make_plan())
    monkeypatch.setattr("services.materializer.claim_for_processing", lambda *a, **k: False)

    result = materialize_pending_payment(pending)

    assert result.created is False
    assert result.client.id == existing.id
    assert Contract.query.count() == 0
