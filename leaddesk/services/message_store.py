from typing import Any, Optional, Union

from leaddesk.logging_config import get_logger
from leaddesk.schemas.booking import BookingPayload, QuickReply
from leaddesk.schemas.conversation import ConversationData, Message

logger = get_logger("message_store")


class MessageStore:
    """Render-ready turns of the currently open conversation.

    All appends happen at the tail, so an optimistic user message always
    precedes the assistant reply that resolves after it.
    """

    def __init__(self, lead_id: str):
        self.lead_id = lead_id
        self.conversation_id: Optional[str] = None
        self.current_step = 0
        self.parsed_fields: dict[str, Any] = {}
        self._messages: list[Message] = []

    def __len__(self) -> int:
        return len(self._messages)

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    def message_at(self, index: int) -> Message:
        if index < 0 or index >= len(self._messages):
            raise IndexError(f"No message at index {index}")
        return self._messages[index]

    def load(self, data: Union[ConversationData, dict]) -> ConversationData:
        """Replace the store wholesale with fetched conversation data."""
        if not isinstance(data, ConversationData):
            data = ConversationData.model_validate(data or {})

        if not data.lead_id:
            data.lead_id = self.lead_id
        self.lead_id = data.lead_id
        if data.conversation_id:
            self.conversation_id = data.conversation_id
        self.current_step = data.current_step or 0
        self.parsed_fields = dict(data.parsed_fields or {})
        self._messages = list(data.messages)

        logger.debug(f"Loaded {len(self._messages)} messages for lead {self.lead_id}")
        return data

    def append_optimistic(self, content: str) -> Message:
        message = Message(role="user", content=content)
        self._messages.append(message)
        return message

    def rollback_last(self, message: Optional[Message] = None) -> Optional[Message]:
        """Undo an optimistic append after a failed send.

        With a message, that exact object is removed even if replies were
        appended after it; without one, the tail is popped.
        """
        if not self._messages:
            return None
        if message is None:
            return self._messages.pop()
        for index in range(len(self._messages) - 1, -1, -1):
            if self._messages[index] is message:
                return self._messages.pop(index)
        return None

    def append_assistant(
        self,
        content: str,
        quick_replies: Optional[list[QuickReply]] = None,
        booking: Optional[BookingPayload] = None,
    ) -> Message:
        message = Message(role="assistant", content=content or "", quick_replies=quick_replies, booking=booking)
        self._messages.append(message)
        return message

    def patch_booking_at(self, index: int, payload: BookingPayload) -> Message:
        """Swap the booking of an existing message; its quick replies no longer apply."""
        message = self.message_at(index)
        message.booking = payload
        message.quick_replies = None
        return message

    def clear_quick_replies(self) -> int:
        cleared = 0
        for message in self._messages:
            if message.quick_replies:
                cleared += 1
            message.quick_replies = None
        return cleared
