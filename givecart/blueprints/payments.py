#!/usr/bin/env python3
"""
GiveCart Payments Blueprint: checkout verification + form and provider webhooks

Mount: /payments  (register blueprint with url_prefix="/payments")

Endpoints:
  GET|POST /payments/checkout/verify     (session_id in JSON body, form or query)
  POST     /payments/webhooks/forms      (JSON, form-urlencoded, multipart or text)
  POST     /payments/webhooks/stripe     (signed checkout.session.* events)

Contracts:
- API-style JSON: never caches; consistent ok/message/error shape.
- Verification is safe to repeat for the same session.
- Webhook senders retry on any non-200, so replays answer 200 with
  alreadyProcessed=true.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, cast

from flask import Blueprint, current_app, g, jsonify, request

from givecart.errors import GiveCartError
from givecart.services.checkout import CheckoutEventHandler, CheckoutVerifier, Settings, construct_event
from givecart.services.intake import SECRET_FIELD, SECRET_HEADERS, FormIntake, decode_request

bp = Blueprint("payments", __name__)

# app.extensions key for an injected session retriever (tests, sandboxes)
RETRIEVER_EXT = "givecart.session_retriever"


# ----------------------------
# Small utilities
# ----------------------------
def _request_payload() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if isinstance(data, dict) and data:
        return cast(Dict[str, Any], data)
    if request.form:
        return cast(Dict[str, Any], request.form.to_dict(flat=True))
    return {}


def _json_response(payload: Dict[str, Any], status: int = 200):
    resp = jsonify(payload)
    resp.status_code = int(status)
    resp.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate, max-age=0")
    resp.headers.setdefault("Pragma", "no-cache")
    resp.headers.setdefault("Expires", "0")
    return resp


def _json_ok(payload: Dict[str, Any], status: int = 200):
    payload.setdefault("ok", True)
    return _json_response(payload, status)


def _json_error(message: str, status: int, extra: Optional[Dict[str, Any]] = None):
    body: Dict[str, Any] = {"ok": False, "message": message, "error": {"message": message}}
    if extra:
        body["error"].update(extra)
        for k, v in extra.items():
            if k not in body:
                body[k] = v
    return _json_response(body, status)


def _error_from(err: GiveCartError, **extra: Any):
    detail = {"code": err.code, "transient": err.transient, "request_id": getattr(g, "request_id", "-")}
    detail.update(extra)
    return _json_error(err.message, err.status_code, detail)


def _verifier() -> CheckoutVerifier:
    settings = Settings.load()
    retrieve = current_app.extensions.get(RETRIEVER_EXT)
    if retrieve is not None:
        return CheckoutVerifier(retrieve, payment_mode=settings.stripe_mode)
    return CheckoutVerifier.from_settings(settings)


def _provided_secret(payload: Dict[str, Any]) -> Optional[str]:
    v = request.args.get(SECRET_FIELD) or payload.get(SECRET_FIELD)
    if v:
        return str(v)
    for header in SECRET_HEADERS:
        hv = request.headers.get(header)
        if hv:
            return hv
    return None


# ----------------------------
# Checkout verification
# ----------------------------
@bp.route("/checkout/verify", methods=["GET", "POST"])
def verify_checkout():
    payload = _request_payload()
    session_id = str(payload.get("session_id") or request.args.get("session_id") or "").strip()

    try:
        result = _verifier().verify(session_id)
    except GiveCartError as e:
        if e.status_code >= 500:
            current_app.logger.error("verify: %s failed: %s %s", session_id or "-", e.code, e.context)
        else:
            current_app.logger.info("verify: %s -> %s", session_id or "-", e.code)
        return _error_from(e, session_id=session_id or None)

    order = result.order
    body: Dict[str, Any] = {
        "order_number": order.order_number if order else None,
        "session_id": session_id,
        "status": order.status if order else None,
        "alreadyRecorded": not result.order_created,
        "donationCreated": result.donation_created,
        "milestone": result.crossing.as_dict() if result.crossing else None,
    }
    return _json_ok(body)


# ----------------------------
# Form-provider webhook
# ----------------------------
@bp.post("/webhooks/forms")
def form_webhook():
    intake = FormIntake(
        secret=current_app.config.get("FORM_WEBHOOK_SECRET"),
        audit_max_chars=int(current_app.config.get("AUDIT_PAYLOAD_MAX_CHARS") or 1000),
    )

    try:
        payload = decode_request(request)
    except GiveCartError as e:
        current_app.logger.warning("form webhook: undecodable body: %s", e.message)
        intake.audit_undecodable(request.get_data(cache=True, as_text=True), e)
        return _error_from(e, success=False)

    try:
        result = intake.ingest(payload, provided_secret=_provided_secret(payload))
    except GiveCartError as e:
        return _error_from(e, success=False)

    return _json_response(result.as_dict(), 200)


# ----------------------------
# Payment-provider webhook
# ----------------------------
@bp.post("/webhooks/stripe")
def stripe_webhook():
    payload = request.get_data(cache=False, as_text=False)
    sig = (request.headers.get("Stripe-Signature") or "").strip()
    endpoint_secret = str(current_app.config.get("STRIPE_WEBHOOK_SECRET") or "").strip()

    try:
        event = construct_event(payload, sig, endpoint_secret)
    except GiveCartError as e:
        current_app.logger.warning("stripe webhook: rejected: %s", e.message)
        return _error_from(e)

    try:
        result = CheckoutEventHandler().handle(event)
    except GiveCartError as e:
        current_app.logger.error("stripe webhook: %s failed: %s %s", event.get("id"), e.code, e.context)
        return _error_from(e, event_id=event.get("id"))

    body: Dict[str, Any] = {"received": True, "event_id": event.get("id"), "handled": result is not None}
    if result is not None:
        body.update(
            {
                "order_number": result.order.order_number if result.order else None,
                "alreadyRecorded": not result.order_created,
                "donationCreated": result.donation_created,
                "milestone": result.crossing.as_dict() if result.crossing else None,
            }
        )
    return _json_ok(body)
