"""
Donation eligibility.

A donor may give again once the configured window (90 days by default) has
passed since their last donation. Everything that needs to know whether a
donor is eligible goes through ``eligibility_cutoff`` so the Python check and
the SQL filter on ``User.is_eligible_to_donate`` cannot drift apart.
"""

import math
from datetime import datetime, timedelta
from typing import Optional

from app.config import settings
from app.db.base import as_utc, utcnow


def eligibility_window() -> timedelta:
    return timedelta(days=settings.DONATION_ELIGIBILITY_DAYS)


def eligibility_cutoff(now: Optional[datetime] = None) -> datetime:
    """Donations strictly before this instant no longer block a new one."""
    return (now or utcnow()) - eligibility_window()


def is_eligible(last_donation: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if last_donation is None:
        return True
    return as_utc(last_donation) < eligibility_cutoff(now)


def next_eligible_at(last_donation: Optional[datetime]) -> Optional[datetime]:
    if last_donation is None:
        return None
    return as_utc(last_donation) + eligibility_window()


def days_until_eligible(
    last_donation: Optional[datetime], now: Optional[datetime] = None
) -> int:
    """Whole days left before the donor is eligible again, 0 when already eligible."""
    now = now or utcnow()
    if is_eligible(last_donation, now):
        return 0
    remaining = next_eligible_at(last_donation) - now
    return max(1, math.ceil(remaining.total_seconds() / 86400))
