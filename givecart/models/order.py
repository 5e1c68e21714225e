from __future__ import annotations

from typing import Any, Dict, Optional

import sqlalchemy as sa
from sqlalchemy import Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from givecart.extensions import db
from givecart.models.mixins import TimestampMixin

ORDER_STATUSES = ("pending", "completed", "failed")


class Order(db.Model, TimestampMixin):
    """
    One storefront sale.

    ``order_number`` and ``session_id`` are both unique: either one collapses
    a retried checkout verification or a re-delivered webhook onto the same
    row. Orders are never deleted.
    """

    __tablename__ = "orders"
    __table_args__ = (
        sa.CheckConstraint("amount_total_cents >= 0", name="ck_orders_amount_nonneg"),
        sa.CheckConstraint("donation_cents >= 0", name="ck_orders_donation_nonneg"),
        sa.CheckConstraint(
            "status IN ('pending', 'completed', 'failed')", name="ck_orders_status"
        ),
        Index("ix_orders_status_created", "status", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    order_number: Mapped[str] = mapped_column(
        db.String(120),
        unique=True,
        index=True,
        nullable=False,
        doc="Idempotency key (provider metadata or form submission id)",
    )

    session_id: Mapped[str] = mapped_column(
        db.String(255),
        unique=True,
        index=True,
        nullable=False,
        doc="External correlation key (cs_... or webhook_<submission>)",
    )

    status: Mapped[str] = mapped_column(db.String(20), nullable=False, default="pending", index=True)

    # ---- Financials (cents) ----
    amount_total_cents: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(db.String(3), nullable=False, default="usd")
    donation_cents: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)

    # ---- Cause ----
    cause_id: Mapped[Optional[str]] = mapped_column(db.String(64), nullable=True, index=True)
    cause_name: Mapped[Optional[str]] = mapped_column(db.String(200), nullable=True)

    # ---- Line item ----
    product_name: Mapped[Optional[str]] = mapped_column(db.String(255), nullable=True)
    quantity: Mapped[int] = mapped_column(db.Integer, nullable=False, default=1)

    # ---- Customer ----
    customer_email: Mapped[Optional[str]] = mapped_column(db.String(255), nullable=True, index=True)
    customer_name: Mapped[Optional[str]] = mapped_column(db.String(160), nullable=True)

    payment_mode: Mapped[Optional[str]] = mapped_column(db.String(10), nullable=True)
    source: Mapped[str] = mapped_column(db.String(20), nullable=False, default="checkout")

    donation = relationship("Donation", back_populates="order", uselist=False, lazy="selectin")

    @property
    def amount_total_dollars(self) -> float:
        return round((self.amount_total_cents or 0) / 100.0, 2)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "session_id": self.session_id,
            "status": self.status,
            "amount_total_cents": int(self.amount_total_cents or 0),
            "currency": self.currency,
            "donation_cents": int(self.donation_cents or 0),
            "cause_id": self.cause_id,
            "customer_email": self.customer_email,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Order {self.order_number} {self.status} ${self.amount_total_dollars:,.2f}>"
