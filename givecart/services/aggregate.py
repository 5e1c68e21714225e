# givecart/services/aggregate.py
"""
Cause running totals.

``raised_cents`` is only ever moved by a single server-side
``UPDATE causes SET raised_cents = raised_cents + :amount`` so concurrent
donations to the same cause cannot lose updates. Nothing here commits: the
caller owns the transaction (the ledger commits the donation row and the
increment together).
"""

from __future__ import annotations

import logging
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import select, update as sa_update

from givecart.extensions import db, emit_socket, milestone_crossed
from givecart.models import Cause, Donation
from givecart.services.milestones import MilestoneCrossing, crossing

log = logging.getLogger(__name__)


def increment_cause_raised(cause_id: str, amount_cents: int) -> Optional[MilestoneCrossing]:
    """
    Atomically add ``amount_cents`` to the cause total.

    Returns the milestone crossing for this increment, or ``None`` when the
    cause does not exist or the amount is not positive. A missing cause is
    logged and ignored: the donation row is authoritative and the total can
    be rebuilt with :func:`recompute_cause_raised`.
    """
    amount = int(amount_cents or 0)
    if not cause_id or amount <= 0:
        log.info("aggregate: skip increment cause=%s amount=%s", cause_id, amount)
        return None

    res = db.session.execute(
        sa_update(Cause)
        .where(Cause.id == cause_id)
        .values(raised_cents=Cause.raised_cents + amount)
        .execution_options(synchronize_session="evaluate")
    )
    if not getattr(res, "rowcount", 0):
        log.warning("aggregate: cause %s not found; increment of %s cents dropped", cause_id, amount)
        return None

    raised_after, goal = db.session.execute(
        select(Cause.raised_cents, Cause.goal_cents).where(Cause.id == cause_id)
    ).one()
    log.info("aggregate: cause=%s +%s cents -> %s", cause_id, amount, raised_after)
    return crossing(int(raised_after) - amount, int(raised_after), int(goal), cause_id=cause_id)


def recompute_cause_raised(cause_id: Optional[str] = None) -> int:
    """
    Rebuild ``raised_cents`` from the donations ledger (one statement).
    Returns the number of causes touched.
    """
    total = (
        select(sa.func.coalesce(sa.func.sum(Donation.amount_cents), 0))
        .where(Donation.cause_id == Cause.id)
        .scalar_subquery()
    )
    stmt = sa_update(Cause).values(raised_cents=total)
    if cause_id:
        stmt = stmt.where(Cause.id == cause_id)
    res = db.session.execute(stmt.execution_options(synchronize_session=False))
    db.session.expire_all()
    touched = int(getattr(res, "rowcount", 0) or 0)
    log.info("aggregate: recomputed raised_cents for %s cause(s)", touched)
    return touched


def announce_crossing(result: Optional[MilestoneCrossing]) -> None:
    """Publish a committed milestone crossing (signal + best-effort socket)."""
    if not result:
        return
    log.info(
        "milestone: cause=%s crossed %s (%s -> %s)",
        result.cause_id,
        result.crossed,
        result.before_count,
        result.after_count,
    )
    milestone_crossed.send(result.cause_id, crossing=result)
    emit_socket("milestone:crossed", result.as_dict())
