from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time, timedelta

from sqlalchemy import case, select
from sqlalchemy.orm import Session

from app.config import settings
from app.models import Mapping
from app.service import to_utc_naive, utcnow


@dataclass
class ExpiryReport:
    expired: list[Mapping] = field(default_factory=list)
    expiring: list[Mapping] = field(default_factory=list)


def expiry_window(now: datetime, days: int = settings.expiring_window_days) -> tuple[datetime, datetime]:
    """
    Whole-day window in UTC: the start of today, and the last instant of the
    day `days` calendar days later.
    """
    day_start = datetime.combine(to_utc_naive(now).date(), time.min)
    horizon = datetime.combine((day_start + timedelta(days=days)).date(), time.max)
    return day_start, horizon


def classify_expiring(
    db: Session,
    now: datetime | None = None,
    days: int = settings.expiring_window_days,
) -> ExpiryReport:
    """
    Enabled mappings expiring on or before the horizon, split into those that
    expired before today started and those expiring from today on.
    """
    day_start, horizon = expiry_window(now or utcnow(), days)

    status = case((Mapping.expiry < day_start, "expired"), else_="expiring").label("status")
    stmt = (
        select(Mapping, status)
        .where(
            Mapping.expiry.is_not(None),
            Mapping.expiry <= horizon,
            Mapping.enabled.is_(True),
        )
        .order_by(Mapping.expiry.asc(), Mapping.path)
    )

    report = ExpiryReport()
    for row in db.execute(stmt):
        bucket = report.expired if row.status == "expired" else report.expiring
        bucket.append(row.Mapping)
    return report
