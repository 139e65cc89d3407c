"""Wall-clock access shared by the services.

Services take a ``clock`` callable so tests can move time without sleeping.
"""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)
