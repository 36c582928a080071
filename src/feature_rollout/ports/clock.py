from datetime import datetime, timezone
from typing import Callable

# Returns the current instant as an aware UTC datetime
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
