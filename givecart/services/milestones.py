"""
Milestone math over a cause's running total.

Every number here is derived from ``raised_cents`` on demand; nothing in this
module is persisted. A milestone is one full ``goal_cents`` cycle ($777 by
default), so a cause that has raised $1,554 has completed two milestones and
is at 0% of its third.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

DEFAULT_GOAL_CENTS = 77700


@dataclass(frozen=True)
class MilestoneProgress:
    raised_cents: int
    goal_cents: int
    milestone_count: int
    progress_cents: int
    percent: float

    @property
    def remaining_cents(self) -> int:
        return self.goal_cents - self.progress_cents

    def as_dict(self) -> Dict[str, Any]:
        badge = current_badge(self.milestone_count)
        nxt = next_badge(self.milestone_count)
        return {
            "raisedCents": self.raised_cents,
            "goalCents": self.goal_cents,
            "milestoneCount": self.milestone_count,
            "progressCents": self.progress_cents,
            "remainingCents": self.remaining_cents,
            "percent": round(self.percent, 4),
            "badge": badge.as_dict() if badge else None,
            "nextBadge": nxt.as_dict() if nxt else None,
            "badgeProgressPercent": badge_progress_percent(self.milestone_count),
        }


@dataclass(frozen=True)
class MilestoneCrossing:
    cause_id: Optional[str]
    before_count: int
    after_count: int
    raised_cents: int

    @property
    def crossed(self) -> int:
        return self.after_count - self.before_count

    def __bool__(self) -> bool:
        return self.crossed > 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "causeId": self.cause_id,
            "before": self.before_count,
            "after": self.after_count,
            "crossed": self.crossed,
            "raisedCents": self.raised_cents,
        }


def _check_goal(goal_cents: int) -> int:
    goal = int(goal_cents)
    if goal <= 0:
        raise ValueError("goal_cents must be > 0")
    return goal


def evaluate(raised_cents: int, goal_cents: int = DEFAULT_GOAL_CENTS) -> MilestoneProgress:
    goal = _check_goal(goal_cents)
    raised = max(0, int(raised_cents or 0))
    count, progress = divmod(raised, goal)
    return MilestoneProgress(
        raised_cents=raised,
        goal_cents=goal,
        milestone_count=count,
        progress_cents=progress,
        percent=min(progress / goal, 1.0),
    )


def crossing(
    before_cents: int,
    after_cents: int,
    goal_cents: int = DEFAULT_GOAL_CENTS,
    *,
    cause_id: Optional[str] = None,
) -> MilestoneCrossing:
    """
    Compare milestone counts around an increment. A single donation that
    spans several thresholds reports all of them in ``crossed``.
    """
    before = evaluate(before_cents, goal_cents)
    after = evaluate(after_cents, goal_cents)
    return MilestoneCrossing(
        cause_id=cause_id,
        before_count=before.milestone_count,
        after_count=after.milestone_count,
        raised_cents=after.raised_cents,
    )


# ─────────────────────────────────────────────────────────────
# Badge tiers (by number of completed milestones)
# ─────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class BadgeTier:
    id: str
    name: str
    milestones_required: int

    def as_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "milestonesRequired": self.milestones_required}


BADGE_TIERS: Tuple[BadgeTier, ...] = (
    BadgeTier("bronze", "Bronze Impact", 1),
    BadgeTier("silver", "Silver Impact", 3),
    BadgeTier("gold", "Gold Impact", 5),
    BadgeTier("platinum", "Platinum Impact", 10),
    BadgeTier("diamond", "Diamond Legend", 20),
)


def achieved_badges(milestone_count: int) -> List[BadgeTier]:
    return [t for t in BADGE_TIERS if milestone_count >= t.milestones_required]


def current_badge(milestone_count: int) -> Optional[BadgeTier]:
    achieved = achieved_badges(milestone_count)
    return achieved[-1] if achieved else None


def next_badge(milestone_count: int) -> Optional[BadgeTier]:
    for t in BADGE_TIERS:
        if milestone_count < t.milestones_required:
            return t
    return None


def badge_progress_percent(milestone_count: int) -> int:
    nxt = next_badge(milestone_count)
    if nxt is None:
        return 100
    cur = current_badge(milestone_count)
    floor = cur.milestones_required if cur else 0
    span = nxt.milestones_required - floor
    return min(100, round((milestone_count - floor) / span * 100))


__all__ = [
    "DEFAULT_GOAL_CENTS",
    "MilestoneProgress",
    "MilestoneCrossing",
    "BadgeTier",
    "BADGE_TIERS",
    "evaluate",
    "crossing",
    "achieved_badges",
    "current_badge",
    "next_badge",
    "badge_progress_percent",
]
