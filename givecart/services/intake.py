# givecart/services/intake.py
"""
Webhook Ingestor for form-provider submissions (Jotform-style payloads).

Pipeline per delivery:
  decode body -> audit (always) -> secret check -> field mapping ->
  replay check -> classify -> ledger writes

Senders retry on any non-200 response, so a replay of an already recorded
submission is answered with 200 and ``alreadyProcessed``.
"""

from __future__ import annotations

import hmac
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import parse_qsl

from givecart.errors import SecretMismatchError, ValidationError
from givecart.extensions import db, safe_commit
from givecart.helpers import MAX_DONATION_CENTS, MAX_ORDER_CENTS, clip, normalize_donation_cents, parse_cents
from givecart.models import AuditLog
from givecart.services.ledger import LedgerResult, LedgerWriter, OrderFields, OrderKey

log = logging.getLogger(__name__)

SECRET_FIELD = "webhook_secret"
SECRET_HEADERS = ("X-Webhook-Secret", "X-Jotform-Secret")

# canonical field -> accepted source keys, first non-empty wins
FIELD_MAP: Dict[str, Tuple[str, ...]] = {
    "submission_id": ("submissionID", "submission_id", "submissionId"),
    "form_type": ("formType", "form_type"),
    "email": ("email", "customer_email", "customerEmail"),
    "name": ("name", "customer_name", "customerName", "fullName"),
    "first_name": ("firstName", "first_name", "first"),
    "last_name": ("lastName", "last_name", "last"),
    "amount": ("amount", "amount_total", "total"),
    "donation": ("donation", "donationAmount", "donation_amount"),
    "product": ("product", "productName", "product_name"),
    "cause_id": ("causeId", "cause_id", "cause"),
}

_QUESTION_KEY = re.compile(r"^q\d+_(?P<name>[A-Za-z][\w]*)(?:\[(?P<sub>\w+)\])?$")
_SECRET_IN_TEXT = re.compile(r"""(webhook_secret["']?\s*[:=]\s*["']?)[^"'&,\s}\]]*""")


# ----------------------------
# Decoding
# ----------------------------
def decode_request(req: Any) -> Dict[str, Any]:
    """
    Normalise a Flask request body into a flat dict:
    JSON, form-urlencoded / multipart, or raw text (JSON first, then query string).
    """
    ct = (req.content_type or "").lower()

    if "application/json" in ct:
        data = req.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError("JSON body must be an object")
        return data

    if "application/x-www-form-urlencoded" in ct or "multipart/form-data" in ct:
        return req.form.to_dict(flat=True)

    return decode_text(req.get_data(cache=True, as_text=True))


def decode_text(text: str) -> Dict[str, Any]:
    text = (text or "").strip()
    if not text:
        return {}
    try:
        data = json.loads(text)
    except ValueError:
        return dict(parse_qsl(text, keep_blank_values=True))
    if not isinstance(data, dict):
        raise ValidationError("JSON body must be an object")
    return data


def _raw_request(payload: Mapping[str, Any]) -> Dict[str, Any]:
    raw = payload.get("rawRequest")
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            data = json.loads(raw)
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
    return {}


def flatten_submission(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Merge top-level fields with the nested ``rawRequest`` and expose
    question-style keys (``q3_email``, ``q4_name[first]``, ``q4_name: {first,..}``)
    under their bare names. Explicit keys win over derived ones.
    """
    merged: Dict[str, Any] = {}
    merged.update({k: v for k, v in payload.items() if k != "rawRequest"})
    merged.update(_raw_request(payload))

    derived: Dict[str, Any] = {}
    for key, value in merged.items():
        m = _QUESTION_KEY.match(str(key))
        if not m:
            continue
        if m.group("sub"):
            derived.setdefault(m.group("sub"), value)
        elif isinstance(value, dict):
            for sub, sub_val in value.items():
                derived.setdefault(str(sub), sub_val)
        else:
            derived.setdefault(m.group("name"), value)

    for key, value in merged.items():
        if isinstance(value, dict) and not _QUESTION_KEY.match(str(key)):
            for sub in ("email", "first", "last"):
                if sub in value:
                    derived.setdefault(sub, value[sub])

    return {**derived, **merged}


def map_fields(flat: Mapping[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for canonical, sources in FIELD_MAP.items():
        out[canonical] = None
        for src in sources:
            v = flat.get(src)
            if isinstance(v, dict):
                continue
            if v is not None and str(v).strip() != "":
                out[canonical] = v
                break
    return out


def redact(payload: Mapping[str, Any]) -> Dict[str, Any]:
    return {k: ("***" if k == SECRET_FIELD else v) for k, v in payload.items()}


def redact_text(text: str) -> str:
    return _SECRET_IN_TEXT.sub(r"\1***", text or "")


# ----------------------------
# Normalised submission
# ----------------------------
@dataclass(frozen=True)
class Submission:
    order_number: str
    form_type: str
    customer_email: Optional[str]
    customer_name: Optional[str]
    product_name: Optional[str]
    cause_id: Optional[str]
    amount_cents: int
    donation_cents: int

    @classmethod
    def from_fields(cls, f: Mapping[str, Any]) -> "Submission":
        amount = parse_cents(f.get("amount"))
        if amount is None or amount < 0:
            raise ValidationError(f"invalid amount: {f.get('amount')!r}")
        donation = parse_cents(f.get("donation"))
        if donation is None or donation < 0:
            raise ValidationError(f"invalid donation: {f.get('donation')!r}")
        if amount > MAX_ORDER_CENTS:
            raise ValidationError(f"amount exceeds the {MAX_ORDER_CENTS} cent limit")

        first, last = clip(f.get("first_name"), 80), clip(f.get("last_name"), 80)
        name = f"{first} {last}" if (first and last) else clip(f.get("name"), 160)
        form_type = str(f.get("form_type") or "").strip().lower()

        # Donation forms commonly post the gift as "amount".
        if form_type == "donation" and donation == 0:
            donation, amount = amount, 0
        if donation > MAX_DONATION_CENTS:
            raise ValidationError(f"donation exceeds the {MAX_DONATION_CENTS} cent limit")

        return cls(
            order_number=submission_number(f),
            form_type=form_type,
            customer_email=clip(f.get("email"), 255),
            customer_name=name,
            product_name=clip(f.get("product"), 255),
            cause_id=clip(f.get("cause_id"), 64),
            amount_cents=amount,
            donation_cents=normalize_donation_cents(donation),
        )

    @property
    def is_donation(self) -> bool:
        return self.form_type == "donation" or self.donation_cents > 0

    @property
    def is_order(self) -> bool:
        return self.form_type == "order" or (self.amount_cents > 0 and bool(self.product_name))


def submission_number(f: Mapping[str, Any]) -> str:
    return clip(f.get("submission_id"), 120) or f"JF-{int(time.time() * 1000)}"


@dataclass
class IntakeResult:
    order_number: str
    already_processed: bool = False
    order_created: bool = False
    donation_created: bool = False
    ledger: Optional[LedgerResult] = None

    def as_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": True,
            "orderNumber": self.order_number,
            "message": "Already processed" if self.already_processed else "Webhook processed successfully",
            "alreadyProcessed": self.already_processed,
            "orderCreated": self.order_created,
            "donationCreated": self.donation_created,
        }
        crossing = self.ledger.crossing if self.ledger else None
        if crossing:
            body["milestone"] = crossing.as_dict()
        return body


# ----------------------------
# Ingestor
# ----------------------------
class FormIntake:
    def __init__(
        self,
        *,
        secret: Optional[str] = None,
        ledger: Optional[LedgerWriter] = None,
        audit_max_chars: int = 1000,
    ) -> None:
        self.secret = (secret or "").strip()
        self.ledger = ledger or LedgerWriter()
        self.audit_max_chars = int(audit_max_chars)

    # -- audit ---------------------------------------------------------
    def _audit(self, action: str, entity_id: Optional[str], details: Dict[str, Any]) -> None:
        AuditLog.record(action, entity_type="webhook", entity_id=entity_id, details=details)
        if not safe_commit():
            log.error("intake: audit write failed action=%s entity=%s", action, entity_id)

    def _raw(self, payload: Mapping[str, Any]) -> str:
        return json.dumps(redact(payload), default=str)[: self.audit_max_chars]

    def audit_undecodable(self, raw_text: str, error: Exception) -> None:
        """Audit a delivery whose body never became a submission."""
        self._audit(
            "form_webhook_received",
            None,
            {"formType": None, "submissionId": None, "rawPayload": redact_text(raw_text)[: self.audit_max_chars]},
        )
        self._audit(
            "form_webhook_error",
            None,
            {"error": str(error)[:500], "errorType": type(error).__name__},
        )

    # -- checks --------------------------------------------------------
    def verify_secret(self, provided: Optional[str]) -> None:
        if not self.secret:
            return
        if not provided or not hmac.compare_digest(str(provided).encode(), self.secret.encode()):
            raise SecretMismatchError("Unauthorized")

    def already_processed(self, order_number: str) -> bool:
        if self.ledger.find_order_by_number(order_number) is not None:
            return True
        return self.ledger.find_donation(submission_id=order_number) is not None

    # -- entry point ---------------------------------------------------
    def ingest(self, payload: Mapping[str, Any], *, provided_secret: Optional[str] = None) -> IntakeResult:
        fields = map_fields(flatten_submission(payload))
        order_number = submission_number(fields)

        self._audit(
            "form_webhook_received",
            order_number,
            {
                "formType": fields.get("form_type"),
                "submissionId": order_number,
                "rawPayload": self._raw(payload),
            },
        )

        try:
            self.verify_secret(provided_secret if provided_secret is not None else payload.get(SECRET_FIELD))
            sub = Submission.from_fields({**fields, "submission_id": order_number})
            return self._process(sub)
        except SecretMismatchError:
            log.warning("intake: secret mismatch for submission %s", order_number)
            self._audit("form_webhook_rejected", order_number, {"reason": "secret_mismatch"})
            raise
        except Exception as e:
            log.error("intake: submission %s failed: %s", order_number, e)
            db.session.rollback()
            self._audit(
                "form_webhook_error",
                order_number,
                {"error": str(e)[:500], "errorType": type(e).__name__},
            )
            raise

    def _process(self, sub: Submission) -> IntakeResult:
        n = sub.order_number
        if self.already_processed(n):
            log.info("intake: submission %s already processed", n)
            return IntakeResult(order_number=n, already_processed=True)

        if not (sub.is_donation or sub.is_order):
            raise ValidationError("submission has neither a donation nor an order")
        if sub.donation_cents > 0 and not sub.cause_id:
            raise ValidationError("causeId is required for a donation")
        if sub.form_type == "donation" and sub.donation_cents <= 0 and not sub.is_order:
            raise ValidationError("donation amount must be positive")

        log.info(
            "intake: submission %s donation=%s order=%s cause=%s",
            n,
            sub.donation_cents,
            sub.is_order,
            sub.cause_id,
        )

        if sub.is_order:
            result = self.ledger.reconcile(
                OrderKey(session_id=f"webhook_{n}", order_number=n),
                OrderFields(
                    status="pending",
                    amount_total_cents=sub.amount_cents,
                    donation_cents=sub.donation_cents,
                    cause_id=sub.cause_id,
                    product_name=sub.product_name,
                    customer_email=sub.customer_email,
                    customer_name=sub.customer_name,
                    source="webhook",
                ),
            )
            return IntakeResult(
                order_number=n,
                order_created=result.order_created,
                donation_created=result.donation_created,
                ledger=result,
            )

        result = self.ledger.record_donation(
            cause_id=sub.cause_id or "",
            amount_cents=sub.donation_cents,
            customer_email=sub.customer_email,
            submission_id=n,
        )
        return IntakeResult(order_number=n, donation_created=result.donation_created, ledger=result)
