from __future__ import annotations

import uuid as _uuid
from typing import Any, Dict

import sqlalchemy as sa
from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from givecart.extensions import db
from givecart.models.mixins import TimestampMixin
from givecart.services.milestones import DEFAULT_GOAL_CENTS, MilestoneProgress, evaluate


class Cause(db.Model, TimestampMixin):
    """
    A nonprofit receiving a slice of each sale.

    ``raised_cents`` is a projection of the donations ledger. It is only ever
    changed by ``services.aggregate.increment_cause_raised`` (one atomic
    UPDATE) or rebuilt by ``recompute_cause_raised``. Milestone numbers are
    derived on read.
    """

    __tablename__ = "causes"
    __table_args__ = (
        sa.CheckConstraint("raised_cents >= 0", name="ck_causes_raised_nonneg"),
        sa.CheckConstraint("goal_cents > 0", name="ck_causes_goal_positive"),
    )

    # ── Keys ────────────────────────────────────────────────────
    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        default=lambda: str(_uuid.uuid4()),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")

    # ── Money (cents) ───────────────────────────────────────────
    raised_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, doc="Running total raised in cents"
    )

    goal_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=DEFAULT_GOAL_CENTS, doc="Milestone size in cents"
    )

    # ── Computed helpers ────────────────────────────────────────
    @property
    def milestones(self) -> MilestoneProgress:
        return evaluate(int(self.raised_cents or 0), int(self.goal_cents or DEFAULT_GOAL_CENTS))

    @property
    def raised_dollars(self) -> float:
        return round(int(self.raised_cents or 0) / 100.0, 2)

    # ── Serialization ───────────────────────────────────────────
    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "raised_cents": int(self.raised_cents or 0),
            "raised_dollars": self.raised_dollars,
            "goal_cents": int(self.goal_cents or 0),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<Cause {self.id} raised=${self.raised_dollars:,.2f}>"
