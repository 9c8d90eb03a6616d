"""
Billing Cycle Calculator

Computes the [start, end) window that contains a given instant for a
subscription anchored at a purchase date:
- WEEKLY: fixed 7-day blocks counted from the anchor
- MONTHLY: boundaries on the anchor's day of month, clamped to the last
  day of shorter months (a Jan 31 anchor renews Feb 28/29, Mar 31, ...)
- FREE: the monthly rule, anchored at the counter's creation

Every boundary is derived from the anchor itself, never from the previous
boundary, so clamping in a short month never shifts later cycles.
"""

import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from subscription.models import PlanType
from utils.time_utils import ensure_utc

WEEK = timedelta(days=7)


@dataclass(frozen=True)
class BillingCycle:
    """Half-open billing window"""
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


def add_months(anchor: datetime, months: int) -> datetime:
    """
    Move `anchor` by whole months, keeping its day and time of day.

    A day past the end of the target month clamps to the last day.
    """
    month_index = anchor.month - 1 + months
    year = anchor.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return anchor.replace(year=year, month=month, day=min(anchor.day, last_day))


def _weekly_cycle(anchor: datetime, now: datetime) -> BillingCycle:
    blocks = (now - anchor) // WEEK
    start = anchor + blocks * WEEK
    return BillingCycle(start=start, end=start + WEEK)


def _monthly_cycle(anchor: datetime, now: datetime) -> BillingCycle:
    months = (now.year - anchor.year) * 12 + (now.month - anchor.month)
    start = add_months(anchor, months)
    if now < start:
        months -= 1
        start = add_months(anchor, months)
    return BillingCycle(start=start, end=add_months(anchor, months + 1))


def compute_cycle(anchor_date: datetime, plan_type: PlanType, now: datetime) -> BillingCycle:
    """
    Return the billing cycle containing `now`.

    Pure function; both datetimes are normalized to UTC. `now` may precede
    the anchor, in which case the cycle before the anchor is returned.
    """
    anchor = ensure_utc(anchor_date)
    now = ensure_utc(now)

    if PlanType(plan_type) == PlanType.WEEKLY:
        return _weekly_cycle(anchor, now)
    return _monthly_cycle(anchor, now)


def plan_from_product_id(product_id: Optional[str]) -> PlanType:
    """Weekly store products carry 'week' in their identifier; everything else is monthly"""
    if product_id and "week" in product_id.lower():
        return PlanType.WEEKLY
    return PlanType.MONTHLY
