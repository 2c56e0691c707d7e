"""Donor eligibility: a donor may give blood again once the cooldown has elapsed."""
from __future__ import annotations

import math
from datetime import datetime, timedelta

from ..database import settings
from ..utils.dates import SECONDS_PER_DAY, floor_days, utcnow


def is_eligible_to_donate(
    last_donation_date: datetime | None,
    now: datetime | None = None,
    cooldown_days: int | None = None,
) -> bool:
    if last_donation_date is None:
        return True
    now = now or utcnow()
    cooldown = settings.donation_cooldown_days if cooldown_days is None else cooldown_days
    return floor_days(last_donation_date, now) >= cooldown


def days_until_eligible(
    last_donation_date: datetime | None,
    now: datetime | None = None,
    cooldown_days: int | None = None,
) -> int:
    now = now or utcnow()
    cooldown = settings.donation_cooldown_days if cooldown_days is None else cooldown_days
    if is_eligible_to_donate(last_donation_date, now, cooldown):
        return 0
    remaining = timedelta(days=cooldown) - (now - last_donation_date)
    return max(math.ceil(remaining.total_seconds() / SECONDS_PER_DAY), 0)
