# givecart/services/ledger.py
"""
Ledger Writer: turns a verified sale into order/donation rows exactly once.

Both intake paths (checkout verification and form webhooks) end here.

Idempotency rests on database constraints, not on lookups alone:

- ``orders.session_id`` and ``orders.order_number`` are UNIQUE. A first-time
  insert that loses a race raises ``IntegrityError``; that is treated as a
  replay and the winning row is updated in place.
- ``donations.order_id`` and ``donations.submission_id`` are UNIQUE. The
  donation insert and the cause increment share one transaction and the
  insert is flushed first, so a duplicate donation fails before the
  increment runs.

Each step commits on its own. If a later step fails the earlier one stays
committed and the whole call can be replayed safely.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from givecart.errors import StoreWriteError, ValidationError
from givecart.extensions import db, retry_on_db_lock
from givecart.models import Donation, Order
from givecart.services.aggregate import announce_crossing, increment_cause_raised
from givecart.services.milestones import MilestoneCrossing

log = logging.getLogger(__name__)

_STATUS_RANK = {"pending": 0, "failed": 1, "completed": 2}


@dataclass(frozen=True)
class OrderKey:
    """Matches an order on session_id OR order_number."""

    session_id: str
    order_number: str

    def __post_init__(self) -> None:
        if not (self.session_id or "").strip() or not (self.order_number or "").strip():
            raise ValidationError("order key needs both session_id and order_number")

    def __str__(self) -> str:
        return f"session={self.session_id} order={self.order_number}"


@dataclass
class OrderFields:
    status: str = "pending"
    amount_total_cents: int = 0
    currency: str = "usd"
    donation_cents: int = 0
    cause_id: Optional[str] = None
    cause_name: Optional[str] = None
    product_name: Optional[str] = None
    quantity: int = 1
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    payment_mode: Optional[str] = None
    source: str = "checkout"

    def values(self) -> Dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass
class LedgerResult:
    order: Optional[Order] = None
    donation: Optional[Donation] = None
    order_created: bool = False
    donation_created: bool = False
    crossing: Optional[MilestoneCrossing] = field(default=None)


class LedgerWriter:
    """Stateless; one instance can serve any number of requests."""

    def __init__(self, *, lock_retries: int = 6) -> None:
        self.lock_retries = lock_retries

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def find_order(self, key: OrderKey) -> Optional[Order]:
        by_session = db.session.execute(
            select(Order).where(Order.session_id == key.session_id)
        ).scalar_one_or_none()
        if by_session is not None:
            return by_session
        return self.find_order_by_number(key.order_number)

    def find_order_by_number(self, order_number: str) -> Optional[Order]:
        return db.session.execute(
            select(Order).where(Order.order_number == order_number)
        ).scalar_one_or_none()

    def find_donation(self, *, order_id: Optional[int] = None, submission_id: Optional[str] = None) -> Optional[Donation]:
        if order_id is not None:
            return db.session.execute(select(Donation).where(Donation.order_id == order_id)).scalar_one_or_none()
        if submission_id:
            return db.session.execute(
                select(Donation).where(Donation.submission_id == submission_id)
            ).scalar_one_or_none()
        return None

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------
    def reconcile(self, key: OrderKey, fields: OrderFields) -> LedgerResult:
        """
        Create or update the order for ``key`` and, when it carries a
        donation for a cause, record that donation at most once.
        """
        order, created = self._upsert_order(key, fields)
        result = LedgerResult(order=order, order_created=created)

        if order.cause_id and int(order.donation_cents or 0) > 0:
            donation, donation_created, crossing = self._ensure_donation(
                cause_id=order.cause_id,
                amount_cents=int(order.donation_cents),
                customer_email=order.customer_email,
                order_id=order.id,
                idem=f"order:{order.order_number}",
            )
            result.donation = donation
            result.donation_created = donation_created
            result.crossing = crossing
            announce_crossing(crossing)

        return result

    def _upsert_order(self, key: OrderKey, fields: OrderFields) -> Tuple[Order, bool]:
        existing = self.find_order(key)
        if existing is not None:
            self._write(lambda: self._update_order(existing, fields), key=str(key), step="order.update")
            log.info("ledger: order updated (%s) status=%s", key, existing.status)
            return existing, False

        def _insert() -> Order:
            order = Order(order_number=key.order_number, session_id=key.session_id)
            for name, value in fields.values().items():
                setattr(order, name, value)
            db.session.add(order)
            db.session.commit()
            return order

        try:
            order = self._write(_insert, key=str(key), step="order.insert")
        except IntegrityError:
            # Another delivery inserted first; treat as a replay.
            db.session.rollback()
            winner = self.find_order(key)
            if winner is None:
                log.error("ledger: unique violation but no order found (%s)", key)
                raise StoreWriteError("order insert conflicted", context={"key": str(key)})
            log.info("ledger: concurrent insert detected, updating winner (%s)", key)
            self._write(lambda: self._update_order(winner, fields), key=str(key), step="order.update")
            return winner, False

        log.info("ledger: order created (%s) id=%s", key, order.id)
        return order, True

    @staticmethod
    def _update_order(order: Order, fields: OrderFields) -> Order:
        values = fields.values()
        status = values.pop("status", None)
        values.pop("source", None)
        for name, value in values.items():
            setattr(order, name, value)
        if status and _STATUS_RANK.get(status, 0) >= _STATUS_RANK.get(order.status, 0):
            order.status = status
        db.session.commit()
        return order

    # ------------------------------------------------------------------
    # Donations
    # ------------------------------------------------------------------
    def record_donation(
        self,
        *,
        cause_id: str,
        amount_cents: int,
        customer_email: Optional[str] = None,
        submission_id: Optional[str] = None,
    ) -> LedgerResult:
        """Donation without an order (donation-only form submissions)."""
        if not cause_id:
            raise ValidationError("cause_id is required for a donation")
        donation, created, crossing = self._ensure_donation(
            cause_id=cause_id,
            amount_cents=int(amount_cents),
            customer_email=customer_email,
            submission_id=submission_id,
            idem=f"submission:{submission_id or '-'}",
        )
        announce_crossing(crossing)
        return LedgerResult(donation=donation, donation_created=created, crossing=crossing)

    def _ensure_donation(
        self,
        *,
        cause_id: str,
        amount_cents: int,
        customer_email: Optional[str],
        idem: str,
        order_id: Optional[int] = None,
        submission_id: Optional[str] = None,
    ) -> Tuple[Optional[Donation], bool, Optional[MilestoneCrossing]]:
        if amount_cents <= 0:
            return None, False, None

        existing = self.find_donation(order_id=order_id, submission_id=submission_id)
        if existing is not None:
            log.info("ledger: donation already recorded (%s) id=%s", idem, existing.id)
            return existing, False, None

        def _insert() -> Tuple[Donation, Optional[MilestoneCrossing]]:
            donation = Donation(
                order_id=order_id,
                submission_id=submission_id,
                cause_id=cause_id,
                amount_cents=amount_cents,
                customer_email=customer_email,
            )
            db.session.add(donation)
            db.session.flush()  # unique violation surfaces here, before the increment
            crossing = increment_cause_raised(cause_id, amount_cents)
            db.session.commit()
            return donation, crossing

        try:
            donation, crossing = self._write(_insert, key=idem, step="donation.insert")
        except IntegrityError:
            db.session.rollback()
            winner = self.find_donation(order_id=order_id, submission_id=submission_id)
            log.info("ledger: donation insert lost race (%s); no increment", idem)
            return winner, False, None

        log.info(
            "ledger: donation created (%s) id=%s cause=%s amount=%s",
            idem,
            donation.id,
            cause_id,
            amount_cents,
        )
        return donation, True, crossing

    # ------------------------------------------------------------------
    # Write wrapper
    # ------------------------------------------------------------------
    def _write(self, fn: Callable[[], Any], *, key: str, step: str) -> Any:
        """
        Run a committing unit of work. ``IntegrityError`` is re-raised for
        the caller to interpret as a replay; any other store failure is
        rolled back, logged with its idempotency key and raised as
        ``StoreWriteError``. Anything else (a driver refusing a value, say)
        is rolled back and re-raised unchanged.
        """
        try:
            return retry_on_db_lock(fn, attempts=self.lock_retries)
        except IntegrityError:
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            log.exception("ledger: %s failed (%s)", step, key)
            raise StoreWriteError(f"{step} failed", context={"key": key, "step": step}) from e
        except Exception:
            db.session.rollback()
            log.exception("ledger: %s failed (%s)", step, key)
            raise
