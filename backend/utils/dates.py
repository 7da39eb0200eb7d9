from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """Naive UTC timestamp, the form MongoDB hands stored datetimes back in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def day_bounds(moment: datetime) -> tuple[datetime, datetime]:
    """Half-open [midnight, midnight + 24h) interval containing `moment`."""
    start = start_of_day(moment)
    return start, start + timedelta(days=1)


def start_of_month(moment: datetime) -> datetime:
    return start_of_day(moment).replace(day=1)
