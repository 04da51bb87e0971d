from leaddesk.services.api_client import ApiError, LeadApiClient
from leaddesk.services.augmentation import ResponseAugmenter, extract_booking
from leaddesk.services.booking_registry import BookingFlowRegistry, BookingFlowState, conversation_key
from leaddesk.services.booking_state_machine import (
    BookingStage,
    InvalidTransitionError,
    can_transition,
    complete,
    decline,
    offer,
    present_slots,
    transition,
)
from leaddesk.services.message_store import MessageStore
from leaddesk.services.reply_scheduler import ReplyScheduler
from leaddesk.services.session_controller import ReplyMode, SessionController
