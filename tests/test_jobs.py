from datetime import datetime, timedelta

from conftest import checkout_body

from models.contract_model import Contract
from models.pending_payment_model import PendingPayment
from services.jobs import reprocess_payment, run_job


def test_run_renewal_job(app, make_contract):
    make_contract(due=datetime.utcnow() - timedelta(days=3))
    result = run_job("renewal")
    assert result["successful"] == 1
    assert result["attempts"][0]["success"] is True


def test_jobs_can_be_disabled(app):
    app.config["ENABLE_CRON_JOBS"] = False
    assert run_job("status") is None


def test_cli_runs_named_job(app, make_contract):
    make_contract(due=datetime.utcnow() - timedelta(days=20))
    runner = app.test_cli_runner()

    result = runner.invoke(args=["jobs", "run", "status"])

    assert result.exit_code == 0
    assert '"updated": 1' in result.output


def test_cli_rejects_unknown_job(app):
    result = app.test_cli_runner().invoke(args=["jobs", "run", "nope"])
    assert result.exit_code != 0


def test_reprocess_materializes_confirmed_pix(app, client, make_plan):
    plan = make_plan()
    payment_id = client.post("/api/checkout/process", json=checkout_body(plan.id, "pix")).get_json()[
        "payment"
    ]["paymentId"]

    result = reprocess_payment(payment_id)

    assert result["result"] == "materialized"
    assert Contract.query.count() == 1
    assert PendingPayment.query.one().processed is True
    assert reprocess_payment(payment_id)["result"] == "already_processed"


def test_reprocess_unknown_payment_via_cli(app):
    result = app.test_cli_runner().invoke(args=["jobs", "reprocess", "nao-existe"])
    assert result.exit_code != 0
    assert "Pagamento não encontrado" in result.output
