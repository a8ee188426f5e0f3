"""Duplicate conversation merge.

Collapses every (customer, rep) group to a single conversation: the oldest
survives, the others' messages are replayed onto it in timestamp order.

Not transactional across a group. Each message is copied and committed,
then the original is deleted and committed, so a crash leaves at worst a
duplicated message, never a lost one. A duplicate conversation is deleted
only once all of its messages have moved; if a move fails the duplicate
stays in place and the next run picks it up again. Failures are contained
per group.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from repchat.clock import as_utc
from repchat.logging_config import get_logger
from repchat.models import Conversation, ConversationReadStatus, Message, Sale
from repchat.services.errors import store_errors
from repchat.services.feed import stage_event
from repchat.services.message_service import list_messages
from repchat.services.state_machine import ConversationStatus

logger = get_logger("merge_service")


@dataclass
class PreviewEntry:
    id: UUID
    status: str
    chat_mode: str
    created_at: datetime
    will_be_kept: bool


@dataclass
class PreviewGroup:
    customer_phone: str
    rep_phone: str
    conversation_count: int
    conversations: list[PreviewEntry]


@dataclass
class PreviewReport:
    total_conversations: int
    duplicate_groups: list[PreviewGroup]

    @property
    def duplicate_groups_count(self) -> int:
        return len(self.duplicate_groups)

    @property
    def total_duplicates_to_remove(self) -> int:
        return sum(group.conversation_count - 1 for group in self.duplicate_groups)


@dataclass
class GroupMergeResult:
    customer_phone: str
    rep_phone: str
    surviving_id: UUID
    deleted_ids: list[UUID] = field(default_factory=list)
    messages_moved: int = 0
    reactivated: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class MergeReport:
    groups: list[GroupMergeResult]

    @property
    def merged_count(self) -> int:
        return sum(1 for group in self.groups if group.ok)

    @property
    def failed_count(self) -> int:
        return sum(1 for group in self.groups if not group.ok)


def oldest_first_key(conversation: Conversation) -> tuple:
    return (as_utc(conversation.created_at), str(conversation.id))


def group_duplicates(db: Session) -> tuple[int, list[list[Conversation]]]:
    """All conversations grouped by identity pair; only groups with more than one member, oldest first."""
    with store_errors("group_duplicates"):
        conversations = db.query(Conversation).all()

    groups: dict[tuple[str, str], list[Conversation]] = {}
    for conversation in conversations:
        groups.setdefault((conversation.customer_phone, conversation.rep_phone), []).append(conversation)

    duplicates = [sorted(members, key=oldest_first_key) for members in groups.values() if len(members) > 1]
    duplicates.sort(key=lambda members: oldest_first_key(members[0]))
    return len(conversations), duplicates


def preview_duplicates(db: Session) -> PreviewReport:
    total, groups = group_duplicates(db)
    return PreviewReport(
        total_conversations=total,
        duplicate_groups=[
            PreviewGroup(
                customer_phone=members[0].customer_phone,
                rep_phone=members[0].rep_phone,
                conversation_count=len(members),
                conversations=[
                    PreviewEntry(
                        id=c.id,
                        status=c.status,
                        chat_mode=c.chat_mode,
                        created_at=c.created_at,
                        will_be_kept=index == 0,
                    )
                    for index, c in enumerate(members)
                ],
            )
            for members in groups
        ],
    )


def _move_message(db: Session, message: Message, target_id: UUID) -> None:
    copy = Message(
        conversation_id=target_id,
        sender=message.sender,
        content=message.content,
        timestamp=message.timestamp,
        delivered_to=list(message.delivered_to or []),
        read_by=list(message.read_by or []),
        delivered_at=message.delivered_at,
        read_at=message.read_at,
        edited=message.edited,
        edited_at=message.edited_at,
    )
    db.add(copy)
    db.commit()

    db.delete(message)
    db.commit()


def _repoint_read_statuses(db: Session, survivor_id: UUID, duplicate_id: UUID) -> None:
    """Carry each admin's read marker over to the survivor, keeping the later one."""
    statuses = db.query(ConversationReadStatus).filter(ConversationReadStatus.conversation_id == duplicate_id).all()
    for status in statuses:
        kept = db.get(ConversationReadStatus, {"conversation_id": survivor_id, "user_id": status.user_id})
        if kept is None:
            db.add(
                ConversationReadStatus(
                    conversation_id=survivor_id,
                    user_id=status.user_id,
                    last_read_at=status.last_read_at,
                )
            )
        elif as_utc(status.last_read_at) > as_utc(kept.last_read_at):
            kept.last_read_at = status.last_read_at
        db.delete(status)
    db.flush()


def _absorb_duplicate(db: Session, survivor: Conversation, duplicate: Conversation, result: GroupMergeResult) -> None:
    """Move one duplicate's messages onto the survivor, then delete it."""
    for message in list_messages(db, duplicate.id):
        _move_message(db, message, survivor.id)
        result.messages_moved += 1

    for sale in db.query(Sale).filter(Sale.conversation_id == duplicate.id).all():
        sale.conversation_id = survivor.id
    db.flush()
    if duplicate.sale_id and not survivor.sale_id:
        survivor.sale_id = duplicate.sale_id
        survivor.sale_status = duplicate.sale_status
    if duplicate.has_potential_sale:
        survivor.has_potential_sale = True
    if duplicate.bridge_ref and not survivor.bridge_ref:
        survivor.bridge_ref = duplicate.bridge_ref
    if duplicate.last_message_at and (
        not survivor.last_message_at or as_utc(duplicate.last_message_at) > as_utc(survivor.last_message_at)
    ):
        survivor.last_message_at = duplicate.last_message_at
        survivor.last_message_sender = duplicate.last_message_sender

    _repoint_read_statuses(db, survivor.id, duplicate.id)
    db.delete(duplicate)
    db.commit()


def _merge_group(db: Session, members: list[Conversation]) -> GroupMergeResult:
    survivor, duplicates = members[0], members[1:]
    any_active = any(c.status == ConversationStatus.ACTIVE.value for c in members)
    result = GroupMergeResult(
        customer_phone=survivor.customer_phone,
        rep_phone=survivor.rep_phone,
        surviving_id=survivor.id,
    )
    errors = []

    for duplicate in duplicates:
        duplicate_id = duplicate.id
        try:
            _absorb_duplicate(db, survivor, duplicate, result)
            result.deleted_ids.append(duplicate_id)
        except Exception as e:
            db.rollback()
            errors.append(f"{duplicate_id}: {e}")
            logger.error(
                f"Failed to merge duplicate {duplicate_id} into {result.surviving_id}: {e}",
                extra={"context": {"survivor_id": str(result.surviving_id), "duplicate_id": str(duplicate_id)}},
            )

    if any_active and survivor.status != ConversationStatus.ACTIVE.value:
        try:
            survivor.status = ConversationStatus.ACTIVE.value
            db.commit()
            result.reactivated = True
        except Exception as e:
            db.rollback()
            errors.append(f"reactivate {result.surviving_id}: {e}")

    if result.deleted_ids:
        stage_event(db, result.surviving_id, "merged", deleted_ids=[str(i) for i in result.deleted_ids])
        db.commit()

    if errors:
        result.error = "; ".join(errors)
    return result


def merge_duplicates(db: Session) -> MergeReport:
    """Merge every duplicate group. Idempotent: a second run over unchanged data does nothing."""
    _, groups = group_duplicates(db)
    report = MergeReport(groups=[])

    for members in groups:
        # read before any rollback expires the rows
        oldest = members[0]
        customer_phone, rep_phone, oldest_id = oldest.customer_phone, oldest.rep_phone, oldest.id
        try:
            group_result = _merge_group(db, members)
        except Exception as e:
            db.rollback()
            logger.error(f"Merge group failed for {oldest_id}: {e}")
            group_result = GroupMergeResult(
                customer_phone=customer_phone,
                rep_phone=rep_phone,
                surviving_id=oldest_id,
                error=str(e),
            )
        report.groups.append(group_result)
        if group_result.ok:
            logger.info(
                f"Merged {len(group_result.deleted_ids)} duplicates into {group_result.surviving_id}",
                extra={"context": {"messages_moved": group_result.messages_moved}},
            )

    return report
