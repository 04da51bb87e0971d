from leaddesk.schemas.booking import BookingDebugSnapshot, BookingMode, BookingPayload, BookingSlot, QuickReply
from leaddesk.schemas.conversation import ConversationData, Message

__all__ = [
    "BookingDebugSnapshot",
    "BookingMode",
    "BookingPayload",
    "BookingSlot",
    "ConversationData",
    "Message",
    "QuickReply",
]
