"""Import all models so Alembic can discover them via Base.metadata."""
from chat_core.infrastructure.db.models.conversation import ConversationModel
from chat_core.infrastructure.db.models.message import MessageModel
from chat_core.infrastructure.db.models.notification import NotificationModel
from chat_core.infrastructure.db.models.outbox import OutboxMessageModel
from chat_core.infrastructure.db.models.presence import PresenceModel
from chat_core.infrastructure.db.models.reaction import ReactionModel
from chat_core.infrastructure.db.models.typing_indicator import TypingIndicatorModel

__all__ = [
    "ConversationModel",
    "MessageModel",
    "NotificationModel",
    "OutboxMessageModel",
    "PresenceModel",
    "ReactionModel",
    "TypingIndicatorModel",
]
