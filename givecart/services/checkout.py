# givecart/services/checkout.py
"""
Checkout Verifier: confirms a provider checkout session is paid and hands
the derived order to the ledger. Signed provider webhooks for the same
sessions are applied here too (see ``CheckoutEventHandler``).

Credentials are passed in explicitly (see ``Settings``); there is no module
level provider client. The session retriever is injectable so the verifier
can run against a fake provider.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

import stripe
from flask import current_app

from givecart.errors import (
    PaymentIncompleteError,
    PaymentNotFoundError,
    ProviderUnavailableError,
    SignatureInvalidError,
    ValidationError,
)
from givecart.helpers import clip, normalize_donation_cents, safe_currency, safe_int
from givecart.services.ledger import LedgerResult, LedgerWriter, OrderFields, OrderKey

log = logging.getLogger(__name__)

SessionRetriever = Callable[[str], Any]


# ----------------------------
# Settings (per request, from app config)
# ----------------------------
@dataclass(frozen=True)
class Settings:
    stripe_sk: str
    timeout: float
    max_network_retries: int
    payment_mode: str

    @classmethod
    def load(cls) -> "Settings":
        cfg = current_app.config
        return cls(
            stripe_sk=str(cfg.get("STRIPE_SECRET_KEY") or "").strip(),
            timeout=float(cfg.get("STRIPE_TIMEOUT_SECONDS") or 10.0),
            max_network_retries=int(cfg.get("STRIPE_MAX_NETWORK_RETRIES") or 0),
            payment_mode=str(cfg.get("PAYMENT_MODE") or "test"),
        )

    @property
    def stripe_mode(self) -> str:
        k = self.stripe_sk
        if k.startswith(("sk_live_", "rk_live_")):
            return "live"
        if k.startswith(("sk_test_", "rk_test_")):
            return "test"
        return self.payment_mode


def stripe_session_retriever(settings: Settings) -> SessionRetriever:
    """Bind a retriever to explicit credentials and a bounded timeout."""
    if not settings.stripe_sk:
        raise ProviderUnavailableError("payment provider key not configured")

    client = stripe.StripeClient(
        settings.stripe_sk,
        max_network_retries=settings.max_network_retries,
        http_client=stripe.RequestsClient(timeout=settings.timeout),
    )
    return client.checkout.sessions.retrieve


def _as_dict(obj: Any) -> Dict[str, Any]:
    if isinstance(obj, dict):
        return obj
    for attr in ("to_dict_recursive", "to_dict"):
        fn = getattr(obj, attr, None)
        if callable(fn):
            return fn()
    return {}


@dataclass(frozen=True)
class VerifiedSession:
    session_id: str
    order_number: str
    product_name: Optional[str]
    quantity: int
    donation_cents: int
    cause_id: Optional[str]
    cause_name: Optional[str]
    amount_total_cents: int
    currency: str
    customer_email: Optional[str]

    @classmethod
    def from_session(cls, session_id: str, session: Mapping[str, Any]) -> "VerifiedSession":
        md = session.get("metadata") or {}
        customer = session.get("customer_details") or {}
        return cls(
            session_id=session_id,
            order_number=clip(md.get("order_number"), 120) or f"ORD-{int(time.time() * 1000)}",
            product_name=clip(md.get("product_name"), 255),
            quantity=max(1, safe_int(md.get("quantity"), 1)),
            donation_cents=normalize_donation_cents(md.get("donation_cents") or 0),
            cause_id=clip(md.get("cause_id"), 64),
            cause_name=clip(md.get("cause_name"), 200),
            amount_total_cents=max(0, safe_int(session.get("amount_total"), 0)),
            currency=safe_currency(session.get("currency"), "usd"),
            customer_email=clip(customer.get("email"), 255),
        )


def is_paid(session: Mapping[str, Any]) -> bool:
    return session.get("payment_status") == "paid" or session.get("status") == "complete"


def record_paid_session(
    ledger: LedgerWriter,
    v: VerifiedSession,
    *,
    payment_mode: Optional[str],
    source: str,
) -> LedgerResult:
    return ledger.reconcile(
        OrderKey(session_id=v.session_id, order_number=v.order_number),
        OrderFields(
            status="completed",
            amount_total_cents=v.amount_total_cents,
            currency=v.currency,
            donation_cents=v.donation_cents,
            cause_id=v.cause_id,
            cause_name=v.cause_name,
            product_name=v.product_name,
            quantity=v.quantity,
            customer_email=v.customer_email,
            payment_mode=payment_mode,
            source=source,
        ),
    )


class CheckoutVerifier:
    def __init__(
        self,
        retrieve: SessionRetriever,
        *,
        ledger: Optional[LedgerWriter] = None,
        payment_mode: Optional[str] = None,
    ) -> None:
        self._retrieve = retrieve
        self.ledger = ledger or LedgerWriter()
        self.payment_mode = payment_mode

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "CheckoutVerifier":
        return cls(stripe_session_retriever(settings), payment_mode=settings.stripe_mode, **kwargs)

    def fetch(self, session_id: str) -> Dict[str, Any]:
        try:
            return _as_dict(self._retrieve(session_id))
        except stripe.InvalidRequestError as e:
            if getattr(e, "http_status", None) == 404 or getattr(e, "code", None) == "resource_missing":
                raise PaymentNotFoundError(
                    "checkout session not found", context={"session_id": session_id}
                ) from e
            log.error("checkout: provider rejected lookup for %s: %s", session_id, e)
            raise ProviderUnavailableError(
                getattr(e, "user_message", None) or "payment provider rejected the lookup",
                context={"session_id": session_id},
            ) from e
        except stripe.StripeError as e:
            log.error("checkout: provider lookup failed for %s: %s", session_id, e)
            raise ProviderUnavailableError(
                "failed to verify payment", context={"session_id": session_id}
            ) from e

    def verify(self, session_id: str) -> LedgerResult:
        """
        Verify ``session_id`` and reconcile it into the ledger.
        Safe to call any number of times for the same session.
        """
        session_id = (session_id or "").strip()
        if not session_id:
            raise ValidationError("session_id is required")

        session = self.fetch(session_id)
        if not session:
            raise PaymentNotFoundError("checkout session not found", context={"session_id": session_id})
        if not is_paid(session):
            log.info("checkout: session %s not paid yet (status=%s)", session_id, session.get("payment_status"))
            raise PaymentIncompleteError("payment not completed yet", context={"session_id": session_id})

        v = VerifiedSession.from_session(session_id, session)
        log.info("checkout: session %s paid; order=%s donation=%s", session_id, v.order_number, v.donation_cents)
        return record_paid_session(self.ledger, v, payment_mode=self.payment_mode, source="checkout")


# ----------------------------
# Signed provider webhook
# ----------------------------
HANDLED_EVENTS = ("checkout.session.completed", "checkout.session.async_payment_succeeded")


def construct_event(payload: bytes, signature: str, secret: str) -> Dict[str, Any]:
    """Verify ``Stripe-Signature`` over the raw body and return the event as a dict."""
    if not secret:
        raise SignatureInvalidError("webhook signing secret not configured")
    if not signature:
        raise SignatureInvalidError("missing Stripe-Signature header")
    try:
        stripe.Webhook.construct_event(payload, signature, secret)
    except (stripe.SignatureVerificationError, ValueError) as e:
        raise SignatureInvalidError("invalid webhook signature") from e
    return json.loads(payload)


class CheckoutEventHandler:
    """
    Applies ``checkout.session.completed`` deliveries through the same
    reconcile path as :class:`CheckoutVerifier`, so provider retries and a
    browser-side verify of the same session collapse into one order.
    """

    def __init__(self, *, ledger: Optional[LedgerWriter] = None) -> None:
        self.ledger = ledger or LedgerWriter()

    def handle(self, event: Mapping[str, Any]) -> Optional[LedgerResult]:
        etype = str(event.get("type") or "")
        if etype not in HANDLED_EVENTS:
            log.info("stripe webhook: ignoring %s (%s)", etype or "-", event.get("id"))
            return None

        obj = (event.get("data") or {}).get("object") or {}
        session_id = str(obj.get("id") or "").strip()
        if not session_id:
            raise ValidationError("event carries no checkout session", context={"event_id": event.get("id")})
        if not is_paid(obj):
            log.info("stripe webhook: session %s not paid yet (status=%s)", session_id, obj.get("payment_status"))
            return None

        v = VerifiedSession.from_session(session_id, obj)
        log.info("stripe webhook: %s for session %s order=%s", etype, session_id, v.order_number)
        return record_paid_session(
            self.ledger,
            v,
            payment_mode="live" if event.get("livemode") else "test",
            source="stripe_webhook",
        )
