import stripe
from sqlalchemy import func, select

from givecart.extensions import db
from givecart.models import Cause, Donation, Order


def _count(model):
    return db.session.execute(select(func.count()).select_from(model)).scalar_one()


def test_verify_paid_session_records_order_and_donation(client, fake_stripe, cause):
    fake_stripe.add("cs_test_abc")

    resp = client.post("/payments/checkout/verify", json={"session_id": "cs_test_abc"})

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["ok"] is True
    assert body["order_number"] == "ORD-cs_test_abc"
    assert body["session_id"] == "cs_test_abc"
    assert body["donationCreated"] is True
    assert resp.headers["Cache-Control"].startswith("no-store")

    order = db.session.execute(select(Order)).scalar_one()
    assert order.status == "completed"
    assert order.amount_total_cents == 2500
    assert order.customer_email == "buyer@example.com"
    assert order.payment_mode == "test"
    assert db.session.get(Cause, "cause-1").raised_cents == 500


def test_verify_twice_is_idempotent(client, fake_stripe, cause):
    fake_stripe.add("cs_test_twice")

    first = client.post("/payments/checkout/verify", json={"session_id": "cs_test_twice"})
    second = client.get("/payments/checkout/verify?session_id=cs_test_twice")

    assert first.status_code == second.status_code == 200
    assert second.get_json()["alreadyRecorded"] is True
    assert second.get_json()["donationCreated"] is False
    assert _count(Order) == 1
    assert _count(Donation) == 1
    db.session.expire_all()
    assert db.session.get(Cause, "cause-1").raised_cents == 500


def test_missing_session_id_is_400(client, fake_stripe):
    resp = client.post("/payments/checkout/verify", json={})
    assert resp.status_code == 400
    assert resp.get_json()["error"]["code"] == "validation_error"
    assert fake_stripe.calls == []


def test_unknown_session_is_404(client, fake_stripe):
    resp = client.post("/payments/checkout/verify", json={"session_id": "cs_missing"})
    assert resp.status_code == 404
    assert resp.get_json()["error"]["code"] == "payment_not_found"
    assert _count(Order) == 0


def test_unpaid_session_is_409_and_transient(client, fake_stripe, cause):
    fake_stripe.add("cs_open", payment_status="unpaid", status="open")

    resp = client.post("/payments/checkout/verify", json={"session_id": "cs_open"})

    assert resp.status_code == 409
    err = resp.get_json()["error"]
    assert err["code"] == "payment_incomplete"
    assert err["transient"] is True
    assert _count(Order) == 0


def test_provider_outage_is_502(client, fake_stripe):
    fake_stripe.fail_with = stripe.APIConnectionError("network down")
    resp = client.post("/payments/checkout/verify", json={"session_id": "cs_any"})
    assert resp.status_code == 502
    assert resp.get_json()["error"]["code"] == "provider_unavailable"


def test_metadata_fallbacks(client, fake_stripe, cause):
    fake_stripe.add(
        "cs_bare",
        metadata={"order_number": "", "quantity": "0", "donation_cents": "25"},
        currency="???",
    )

    resp = client.post("/payments/checkout/verify", json={"session_id": "cs_bare"})

    assert resp.status_code == 200
    assert resp.get_json()["order_number"].startswith("ORD-")
    order = db.session.execute(select(Order)).scalar_one()
    assert order.quantity == 1
    assert order.currency == "usd"
    assert order.donation_cents == 0  # under the provider minimum
    assert _count(Donation) == 0


def test_milestone_reported_on_crossing(client, fake_stripe, cause):
    fake_stripe.add("cs_big", metadata={"donation_cents": "155400"})
    body = client.post("/payments/checkout/verify", json={"session_id": "cs_big"}).get_json()
    assert body["milestone"]["crossed"] == 2


def test_milestones_endpoint_reads_aggregate(client, fake_stripe, cause):
    fake_stripe.add("cs_m", metadata={"donation_cents": "100000"})
    client.post("/payments/checkout/verify", json={"session_id": "cs_m"})

    resp = client.get("/api/causes/cause-1/milestones")
    assert resp.status_code == 200
    m = resp.get_json()["milestones"]
    assert m["milestoneCount"] == 1
    assert m["progressCents"] == 22300

    assert client.get("/api/causes/nope/milestones").status_code == 404


def test_healthz(client):
    resp = client.get("/healthz", headers={"X-Request-ID": "rid-1"})
    assert resp.status_code == 200
    assert resp.get_json()["request_id"] == "rid-1"
    assert resp.headers["X-Request-ID"] == "rid-1"
