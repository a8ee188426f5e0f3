"""Conversation change feed.

Services stage events on the session; they are delivered to subscribers only
after the session commits, and dropped on rollback. Whether subscribers poll
or push to clients is up to the transport layer.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy import event
from sqlalchemy.orm import Session

from repchat.clock import utc_now
from repchat.logging_config import get_logger

logger = get_logger("feed")

_PENDING_KEY = "repchat_pending_events"


@dataclass(frozen=True)
class ConversationEvent:
    conversation_id: UUID
    kind: str  # message_added, message_edited, mode_changed, status_changed, receipts_updated, typing_changed, merged
    payload: dict = field(default_factory=dict)
    at: datetime = field(default_factory=utc_now)


Subscriber = Callable[[ConversationEvent], None]


class ConversationFeed:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: dict[Optional[UUID], list[Subscriber]] = {}

    def subscribe(self, conversation_id: Optional[UUID], callback: Subscriber) -> Callable[[], None]:
        """Subscribe to one conversation, or to all when conversation_id is None. Returns an unsubscribe callable."""
        with self._lock:
            self._subscribers.setdefault(conversation_id, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(conversation_id, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def publish(self, conversation_event: ConversationEvent) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(conversation_event.conversation_id, []))
            callbacks += self._subscribers.get(None, [])
        for callback in callbacks:
            try:
                callback(conversation_event)
            except Exception as e:
                logger.warning(f"Feed subscriber failed for {conversation_event.kind}: {e}")


feed = ConversationFeed()


def stage_event(db: Session, conversation_id: UUID, kind: str, **payload) -> None:
    db.info.setdefault(_PENDING_KEY, []).append(ConversationEvent(conversation_id, kind, payload))


@event.listens_for(Session, "after_commit")
def _publish_pending(session: Session) -> None:
    for pending in session.info.pop(_PENDING_KEY, []):
        feed.publish(pending)


@event.listens_for(Session, "after_soft_rollback")
def _drop_pending(session: Session, previous_transaction) -> None:
    session.info.pop(_PENDING_KEY, None)
