"""Date helpers shared by the tests."""

from datetime import date, datetime, time, timedelta


def next_weekday(weekday: int, after: date | None = None) -> date:
    """First date strictly after ``after`` (default today) falling on ``weekday``."""
    after = after or date.today()
    days_ahead = (weekday - after.weekday()) % 7 or 7
    return after + timedelta(days=days_ahead)


def at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute))
