"""Time helpers shared by the lifecycle, sweeper and audit components."""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime.

    Timestamps are stored without tzinfo so that comparisons against
    database values behave the same on SQLite and PostgreSQL.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)
