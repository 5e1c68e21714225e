import hashlib
import hmac
import json
import time

import pytest
from sqlalchemy import func, select

from givecart.extensions import db
from givecart.models import Cause, Donation, Order

URL = "/payments/webhooks/stripe"
SECRET = "whsec_test_dummy"


def _count(model):
    return db.session.execute(select(func.count()).select_from(model)).scalar_one()


def _event(session, event_id="evt_1", etype="checkout.session.completed", livemode=False):
    return {
        "id": event_id,
        "object": "event",
        "type": etype,
        "livemode": livemode,
        "data": {"object": session},
    }


def _sign(payload: bytes, secret: str = SECRET, ts=None) -> str:
    ts = int(time.time()) if ts is None else ts
    mac = hmac.new(secret.encode(), f"{ts}.{payload.decode()}".encode(), hashlib.sha256).hexdigest()
    return f"t={ts},v1={mac}"


def _post(client, event, signature=None):
    payload = json.dumps(event).encode()
    headers = {"Stripe-Signature": _sign(payload) if signature is None else signature}
    return client.post(URL, data=payload, headers=headers, content_type="application/json")


def test_completed_event_records_order_once(client, fake_stripe, cause):
    event = _event(fake_stripe.add("cs_w1"))

    first = _post(client, event)
    replay = _post(client, event)

    assert first.status_code == replay.status_code == 200
    a, b = first.get_json(), replay.get_json()
    assert a["handled"] is True
    assert a["order_number"] == "ORD-cs_w1"
    assert a["alreadyRecorded"] is False and a["donationCreated"] is True
    assert b["alreadyRecorded"] is True and b["donationCreated"] is False

    order = db.session.execute(select(Order)).scalar_one()
    assert order.status == "completed"
    assert order.source == "stripe_webhook"
    assert order.payment_mode == "test"
    assert _count(Donation) == 1
    db.session.expire_all()
    assert db.session.get(Cause, "cause-1").raised_cents == 500
    assert fake_stripe.calls == []


def test_webhook_and_verify_collapse_into_one_order(client, fake_stripe, cause):
    _post(client, _event(fake_stripe.add("cs_w2")))
    resp = client.post("/payments/checkout/verify", json={"session_id": "cs_w2"})

    assert resp.status_code == 200
    assert resp.get_json()["alreadyRecorded"] is True
    assert _count(Order) == 1
    assert _count(Donation) == 1
    db.session.expire_all()
    assert db.session.get(Cause, "cause-1").raised_cents == 500


@pytest.mark.parametrize(
    "signature",
    [
        "",
        "t=1,v1=deadbeef",
        _sign(b"{}", secret="whsec_other"),
    ],
)
def test_bad_signature_is_400_and_writes_nothing(client, fake_stripe, cause, signature):
    resp = _post(client, _event(fake_stripe.add("cs_w3")), signature=signature)

    assert resp.status_code == 400
    assert resp.get_json()["error"]["code"] == "invalid_signature"
    assert _count(Order) == 0


def test_unconfigured_secret_rejects_every_delivery(app, client, fake_stripe, cause):
    app.config["STRIPE_WEBHOOK_SECRET"] = ""
    resp = _post(client, _event(fake_stripe.add("cs_w4")))

    assert resp.status_code == 400
    assert _count(Order) == 0


def test_unhandled_event_type_is_acknowledged(client, fake_stripe):
    resp = _post(client, _event({"id": "pi_1"}, etype="payment_intent.created"))

    assert resp.status_code == 200
    assert resp.get_json()["handled"] is False
    assert _count(Order) == 0


def test_unpaid_session_is_acknowledged_without_writes(client, fake_stripe, cause):
    session = fake_stripe.add("cs_w5", payment_status="unpaid", status="open")
    resp = _post(client, _event(session))

    assert resp.status_code == 200
    assert resp.get_json()["handled"] is False
    assert _count(Order) == 0


def test_livemode_event_marks_order_live(client, fake_stripe, cause):
    _post(client, _event(fake_stripe.add("cs_w6"), livemode=True))
    assert db.session.execute(select(Order)).scalar_one().payment_mode == "live"
