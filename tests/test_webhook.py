import json

import pytest
from sqlalchemy import func, select

from givecart.extensions import db
from givecart.models import AuditLog, Cause, Donation, Order
from givecart.services.intake import flatten_submission, map_fields, redact_text

URL = "/payments/webhooks/forms"


def _count(model, *where):
    stmt = select(func.count()).select_from(model)
    for w in where:
        stmt = stmt.where(w)
    return db.session.execute(stmt).scalar_one()


def _order_payload(**kw):
    payload = {
        "submissionID": "5801",
        "formType": "order",
        "email": "fan@example.com",
        "firstName": "Ada",
        "lastName": "Lovelace",
        "amount": "40.00",
        "donation": "5.00",
        "product": "Hoodie",
        "causeId": "cause-1",
    }
    payload.update(kw)
    return payload


@pytest.fixture
def secret(app):
    app.config["FORM_WEBHOOK_SECRET"] = "s3cret"
    return "s3cret"


def test_order_with_donation(client, cause):
    resp = client.post(URL, json=_order_payload())

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["success"] is True
    assert body["orderNumber"] == "5801"
    assert body["alreadyProcessed"] is False

    order = db.session.execute(select(Order)).scalar_one()
    assert order.status == "pending"
    assert order.session_id == "webhook_5801"
    assert order.source == "webhook"
    assert order.amount_total_cents == 4000
    assert order.donation_cents == 500
    assert order.customer_name == "Ada Lovelace"
    assert _count(Donation) == 1
    assert db.session.get(Cause, "cause-1").raised_cents == 500


def test_replay_is_audited_but_not_reapplied(client, cause):
    first = client.post(URL, json=_order_payload())
    second = client.post(URL, json=_order_payload())

    assert first.status_code == second.status_code == 200
    assert second.get_json()["alreadyProcessed"] is True
    assert _count(Order) == 1
    assert _count(Donation) == 1
    assert _count(AuditLog, AuditLog.action == "form_webhook_received") == 2
    db.session.expire_all()
    assert db.session.get(Cause, "cause-1").raised_cents == 500


def test_donation_only_creates_no_order(client, cause):
    payload = {"submissionID": "6001", "formType": "donation", "donation": "25", "causeId": "cause-1"}

    resp = client.post(URL, json=payload)
    replay = client.post(URL, json=payload)

    assert resp.status_code == 200
    assert resp.get_json()["donationCreated"] is True
    assert replay.get_json()["alreadyProcessed"] is True
    assert _count(Order) == 0
    assert _count(Donation) == 1
    donation = db.session.execute(select(Donation)).scalar_one()
    assert donation.submission_id == "6001"
    assert donation.order_id is None
    assert db.session.get(Cause, "cause-1").raised_cents == 2500


def test_donation_form_amount_field(client, cause):
    resp = client.post(URL, json={"submissionID": "6002", "formType": "donation", "amount": "10", "causeId": "cause-1"})
    assert resp.status_code == 200
    assert _count(Order) == 0
    assert db.session.get(Cause, "cause-1").raised_cents == 1000


def test_secret_mismatch_is_401_and_audited(client, cause, secret):
    resp = client.post(URL, json=_order_payload(), headers={"X-Webhook-Secret": "wrong"})

    assert resp.status_code == 401
    assert resp.get_json()["success"] is False
    assert _count(Order) == 0
    assert _count(AuditLog, AuditLog.action == "form_webhook_received") == 1


def test_missing_secret_is_401(client, cause, secret):
    assert client.post(URL, json=_order_payload()).status_code == 401


@pytest.mark.parametrize(
    "how",
    ["query", "payload", "header", "jotform_header"],
)
def test_secret_sources(client, cause, secret, how):
    url, payload, headers = URL, _order_payload(), {}
    if how == "query":
        url = f"{URL}?webhook_secret={secret}"
    elif how == "payload":
        payload["webhook_secret"] = secret
    elif how == "header":
        headers["X-Webhook-Secret"] = secret
    else:
        headers["X-Jotform-Secret"] = secret

    assert client.post(url, json=payload, headers=headers).status_code == 200


def test_secret_is_redacted_in_audit(client, cause, secret):
    client.post(URL, json=_order_payload(webhook_secret=secret))
    entry = db.session.execute(select(AuditLog).where(AuditLog.action == "form_webhook_received")).scalar_one()
    assert secret not in entry.details["rawPayload"]


def test_invalid_amount_is_400(client, cause):
    resp = client.post(URL, json=_order_payload(amount="forty"))

    assert resp.status_code == 400
    assert resp.get_json()["error"]["code"] == "validation_error"
    assert _count(Order) == 0
    assert _count(AuditLog, AuditLog.action == "form_webhook_error") == 1


def test_oversized_amount_is_400_and_error_audited(client, cause):
    resp = client.post(URL, json=_order_payload(submissionID="9101", amount="999999999999999999999"))

    assert resp.status_code == 400
    assert resp.get_json()["error"]["code"] == "validation_error"
    assert _count(Order) == 0
    assert _count(AuditLog, AuditLog.action == "form_webhook_received") == 1
    assert _count(AuditLog, AuditLog.action == "form_webhook_error") == 1


def test_donation_above_cap_is_400(client, cause):
    payload = {"submissionID": "9102", "formType": "donation", "amount": "200000", "causeId": "cause-1"}
    resp = client.post(URL, json=payload)

    assert resp.status_code == 400
    assert _count(Donation) == 0
    assert db.session.get(Cause, "cause-1").raised_cents == 0


def test_donation_without_cause_is_400(client):
    resp = client.post(URL, json={"submissionID": "7001", "donation": "10"})
    assert resp.status_code == 400
    assert _count(Donation) == 0


def test_form_urlencoded(client, cause):
    resp = client.post(URL, data=_order_payload(submissionID="8001"))
    assert resp.status_code == 200
    assert _count(Order, Order.order_number == "8001") == 1


def test_raw_text_query_string(client, cause):
    body = "submissionID=8002&formType=donation&donation=12.50&causeId=cause-1"
    resp = client.post(URL, data=body, content_type="text/plain")
    assert resp.status_code == 200
    assert db.session.get(Cause, "cause-1").raised_cents == 1250


def test_raw_request_and_question_keys(client, cause):
    raw = {
        "q3_email": "nested@example.com",
        "q4_name": {"first": "Grace", "last": "Hopper"},
        "q5_amount": "30",
        "q6_product": "Mug",
    }
    resp = client.post(
        URL,
        data={"submissionID": "8003", "rawRequest": json.dumps(raw)},
    )

    assert resp.status_code == 200
    order = db.session.execute(select(Order)).scalar_one()
    assert order.customer_email == "nested@example.com"
    assert order.customer_name == "Grace Hopper"
    assert order.product_name == "Mug"
    assert order.amount_total_cents == 3000


def test_field_map_prefers_first_listed_key():
    fields = map_fields(flatten_submission({"submissionID": "a", "submission_id": "b", "q9_causeId": "c-9"}))
    assert fields["submission_id"] == "a"
    assert fields["cause_id"] == "c-9"


def test_bracketed_question_keys():
    fields = map_fields(flatten_submission({"q4_name[first]": "Alan", "q4_name[last]": "Turing"}))
    assert fields["first_name"] == "Alan"
    assert fields["last_name"] == "Turing"


def test_missing_submission_id_gets_generated_number(client, cause):
    resp = client.post(URL, json={"formType": "donation", "donation": "5", "causeId": "cause-1"})
    assert resp.status_code == 200
    assert resp.get_json()["orderNumber"].startswith("JF-")


@pytest.mark.parametrize(
    "body,content_type",
    [
        ('["not","an","object"]', "application/json"),
        ("42", "text/plain"),
    ],
)
def test_undecodable_body_is_audited_before_400(client, body, content_type):
    resp = client.post(URL, data=body, content_type=content_type)

    assert resp.status_code == 400
    assert resp.get_json()["success"] is False
    entries = db.session.execute(select(AuditLog).order_by(AuditLog.id)).scalars().all()
    assert [e.action for e in entries] == ["form_webhook_received", "form_webhook_error"]
    assert entries[0].details["rawPayload"] == body
    assert entries[1].details["errorType"] == "ValidationError"


def test_undecodable_body_audit_is_truncated_and_redacted(app, client):
    app.config["AUDIT_PAYLOAD_MAX_CHARS"] = 40
    body = json.dumps([{"webhook_secret": "hunter2"}, "x" * 200])

    client.post(URL, data=body, content_type="application/json")

    raw = db.session.execute(
        select(AuditLog).where(AuditLog.action == "form_webhook_received")
    ).scalar_one().details["rawPayload"]
    assert len(raw) == 40
    assert "hunter2" not in raw


def test_redact_text():
    assert redact_text("webhook_secret=abc&x=1") == "webhook_secret=***&x=1"
    assert redact_text('{"webhook_secret": "abc", "a": 1}') == '{"webhook_secret": "***", "a": 1}'
