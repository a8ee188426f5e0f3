from repchat.models.conversation import Conversation
from repchat.models.message import ConversationReadStatus, Message
from repchat.models.rep import Rep
from repchat.models.sale import AuditEntry, Sale, SaleEvidence

__all__ = [
    "Conversation",
    "Message",
    "ConversationReadStatus",
    "Rep",
    "Sale",
    "SaleEvidence",
    "AuditEntry",
]
