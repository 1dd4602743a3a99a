import calendar
import math
import re
from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo

from config import get_settings

MONTH_PATTERN = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


@dataclass(frozen=True)
class Period:
    slug: str
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


def local_now() -> datetime:
    settings = get_settings()
    return datetime.now(ZoneInfo(settings.timezone)).replace(tzinfo=None)


def to_local_naive(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    tz = ZoneInfo(get_settings().timezone)
    return moment.astimezone(tz).replace(tzinfo=None)


def month_key(moment: datetime) -> str:
    return f"{moment.year:04d}-{moment.month:02d}"


def parse_month(value: str) -> tuple[int, int]:
    match = MONTH_PATTERN.match(value or "")
    if not match:
        raise ValueError(f"Invalid month '{value}', expected YYYY-MM")
    return int(match.group(1)), int(match.group(2))


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def month_period(value: str) -> Period:
    year, month = parse_month(value)
    start = datetime(year, month, 1)
    end = datetime(year, month, days_in_month(year, month), 23, 59, 59, 999999)
    return Period(value, start, end)


def remaining_days_in_month(now: datetime) -> int:
    return days_in_month(now.year, now.month) - now.day


def days_until(moment: datetime, now: datetime) -> int:
    """Whole days from ``now`` to ``moment``, rounded up."""
    return math.ceil((moment - now).total_seconds() / 86400)


def calendar_days_until(moment: datetime, today: datetime) -> int:
    start = today.replace(hour=0, minute=0, second=0, microsecond=0)
    end = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    return (end - start).days
