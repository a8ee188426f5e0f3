import threading
import time
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], float]

_seq_lock = threading.Lock()
_last_seq = 0


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from stores without tz support."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def next_sequence() -> int:
    """Strictly increasing insertion sequence, used to order messages sharing a timestamp."""
    global _last_seq
    with _seq_lock:
        _last_seq = max(time.time_ns(), _last_seq + 1)
        return _last_seq
