import calendar
import re
from datetime import datetime, timezone

UUID_REGEX = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


def utcnow():
    """Naive UTC timestamp, matching how the models store datetimes."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def is_uuid(value):
    return isinstance(value, str) and bool(UUID_REGEX.match(value))


def add_months(moment, months):
    """Calendar month arithmetic, clamping the day to the target month's length."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)
