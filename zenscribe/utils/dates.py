from datetime import datetime, timezone
from typing import Tuple


def utcnow() -> datetime:
    """Naive UTC now, matching the naive period columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def month_period(moment: datetime) -> Tuple[datetime, datetime]:
    """
    Billing period containing a moment

    Args:
        moment: Naive UTC datetime

    Returns:
        (first instant of the month, first instant of the next month)
    """
    start = moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end
