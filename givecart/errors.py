"""
GiveCart error taxonomy.

Each error knows the HTTP status it maps to at the edge and whether the
caller should retry (``transient``). Blueprints raise these; the app factory
renders them with the common JSON error shape.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class GiveCartError(Exception):
    status_code = 500
    code = "internal_error"
    transient = False

    def __init__(self, message: str = "", *, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context: Dict[str, Any] = dict(context or {})

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "transient": self.transient}


class PaymentNotFoundError(GiveCartError):
    """The provider has no record of the checkout session."""

    status_code = 404
    code = "payment_not_found"


class PaymentIncompleteError(GiveCartError):
    """Session exists but is not paid yet; poll again."""

    status_code = 409
    code = "payment_incomplete"
    transient = True


class ProviderUnavailableError(GiveCartError):
    status_code = 502
    code = "provider_unavailable"
    transient = True


class ValidationError(GiveCartError):
    status_code = 400
    code = "validation_error"


class SecretMismatchError(GiveCartError):
    status_code = 401
    code = "unauthorized"


class SignatureInvalidError(GiveCartError):
    """Provider webhook body failed signature verification."""

    status_code = 400
    code = "invalid_signature"


class StoreWriteError(GiveCartError):
    """Persisting an order, donation or aggregate failed (already rolled back)."""

    status_code = 500
    code = "store_write_failed"


class VendorUnavailableError(GiveCartError):
    # Counted by the price breaker; never rendered to an HTTP caller.
    status_code = 503
    code = "vendor_unavailable"
    transient = True


__all__ = [
    "GiveCartError",
    "PaymentNotFoundError",
    "PaymentIncompleteError",
    "ProviderUnavailableError",
    "ValidationError",
    "SecretMismatchError",
    "SignatureInvalidError",
    "StoreWriteError",
    "VendorUnavailableError",
]
