# Time source for every "now" comparison of the engine.
from datetime import datetime, timezone

from .config import LOCAL_TZ


class Clock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    # naive values come back from the database and are stored as UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_local(dt: datetime) -> datetime:
    return as_utc(dt).astimezone(LOCAL_TZ)


def from_request(dt: datetime) -> datetime:
    # client values without an offset are local wall-clock times
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=LOCAL_TZ)
    return dt.astimezone(timezone.utc)
