from __future__ import annotations

# -----------------------------------------------------------------------------
# Donation Model
# Immutable ledger row. At most one per order (order_id UNIQUE) and at most
# one per form submission (submission_id UNIQUE); both are nullable.
# -----------------------------------------------------------------------------
from typing import Any, Dict, Optional

from sqlalchemy import CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from givecart.extensions import db

from .mixins import CreatedAtMixin


class Donation(db.Model, CreatedAtMixin):
    __tablename__ = "donations"
    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_donations_amount_positive"),
        Index("ix_donations_cause_created", "cause_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    order_id: Mapped[Optional[int]] = mapped_column(
        db.ForeignKey("orders.id", ondelete="SET NULL"),
        unique=True,
        nullable=True,
        doc="Linked order; the idempotency boundary for the financial side effect",
    )
    order = relationship("Order", back_populates="donation", lazy="joined")

    submission_id: Mapped[Optional[str]] = mapped_column(
        db.String(120),
        unique=True,
        nullable=True,
        doc="Form submission id for donation-only webhook intake",
    )

    # Plain key, no FK: the cause catalog may lag behind the ledger and a
    # donation for an unknown cause must still be recorded.
    cause_id: Mapped[str] = mapped_column(db.String(64), nullable=False, index=True)

    amount_cents: Mapped[int] = mapped_column(
        db.Integer,
        nullable=False,
        doc="Donation amount in cents",
    )

    customer_email: Mapped[Optional[str]] = mapped_column(db.String(255), nullable=True, index=True)

    @property
    def amount_dollars(self) -> float:
        return round((self.amount_cents or 0) / 100.0, 2)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "submission_id": self.submission_id,
            "cause_id": self.cause_id,
            "amount_cents": int(self.amount_cents or 0),
            "amount_dollars": self.amount_dollars,
            "customer_email": self.customer_email,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Donation cause={self.cause_id} ${self.amount_dollars:,.2f} order={self.order_id}>"
