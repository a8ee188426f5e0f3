import threading
import time
from dataclasses import dataclass
from typing import Any, Hashable, Optional

from sqlalchemy.orm import Session

from repchat.clock import Clock
from repchat.config import settings
from repchat.logging_config import get_logger
from repchat.models import Rep

logger = get_logger("rep_directory")

DEFAULT_REP_ID = "default"


class TTLCache:
    """Small thread-safe cache with an injectable clock. Misses are cached too."""

    def __init__(self, ttl_seconds: float, clock: Clock = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[Hashable, tuple[float, Any]] = {}

    def get(self, key: Hashable) -> tuple[bool, Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False, None
            stored_at, value = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                return False, None
            return True, value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self._clock(), value)

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


@dataclass(frozen=True)
class RepInfo:
    rep_id: str
    name: str
    phone_number: str
    email: Optional[str] = None

    def snapshot(self) -> dict:
        return {"rep_id": self.rep_id, "name": self.name, "phone_number": self.phone_number}


class RepDirectory:
    """Rep lookups by public rep id and by phone number, cached per instance."""

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        clock: Clock = time.monotonic,
        default_phone: Optional[str] = None,
    ):
        ttl = settings.rep_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self.default_phone = default_phone or settings.default_rep_phone_number
        self._by_rep_id = TTLCache(ttl, clock)
        self._by_phone = TTLCache(ttl, clock)

    def get_by_rep_id(self, db: Session, rep_id: str) -> Optional[RepInfo]:
        hit, cached = self._by_rep_id.get(rep_id)
        if hit:
            return cached

        rep = db.query(Rep).filter(Rep.rep_id == rep_id, Rep.is_active.is_(True)).first()
        info = _to_info(rep) if rep and rep.phone_number else None
        if rep and not rep.phone_number:
            logger.warning(f"Rep {rep_id} has no phone number")
        self._by_rep_id.set(rep_id, info)
        return info

    def get_by_phone(self, db: Session, phone_number: str) -> Optional[RepInfo]:
        hit, cached = self._by_phone.get(phone_number)
        if hit:
            return cached

        rep = db.query(Rep).filter(Rep.phone_number == phone_number, Rep.is_active.is_(True)).first()
        info = _to_info(rep) if rep else None
        self._by_phone.set(phone_number, info)
        return info

    def resolve_rep_phone(self, db: Session, rep_id: str) -> Optional[str]:
        """Phone number for a public rep id; the reserved 'default' id maps to the configured number."""
        info = self.get_by_rep_id(db, rep_id)
        if info:
            return info.phone_number
        if rep_id == DEFAULT_REP_ID:
            return self.default_phone
        return None

    def invalidate(self, rep_id: Optional[str] = None, phone_number: Optional[str] = None) -> None:
        if rep_id:
            self._by_rep_id.invalidate(rep_id)
        if phone_number:
            self._by_phone.invalidate(phone_number)


def _to_info(rep: Rep) -> RepInfo:
    return RepInfo(rep_id=rep.rep_id, name=rep.name or "Rep", phone_number=rep.phone_number, email=rep.email)
