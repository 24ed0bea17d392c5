from __future__ import annotations
import math
from datetime import datetime, timezone, date
from typing import Optional
from flask import abort


def utcnow() -> datetime:
    """Naive UTC now; SQLite drops tzinfo so all stored datetimes are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if isinstance(dt, datetime):
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.isoformat().replace('+00:00', 'Z')
    return dt.isoformat()


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes, rounded up."""
    seconds = (end - start).total_seconds()
    return max(0, math.ceil(seconds / 60))


def parse_date_arg(value: Optional[str], field_name: str = 'date') -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        abort(400, description=f'{field_name} must be YYYY-MM-DD')


__all__ = ['utcnow', 'iso', 'minutes_between', 'parse_date_arg']
