import asyncio
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from pydantic import ValidationError

from leaddesk.config import settings
from leaddesk.logging_config import get_logger
from leaddesk.schemas.booking import (
    BookingDebugSnapshot,
    BookingMode,
    BookingPayload,
    BookingSlot,
    QuickReply,
    decode_booking_payload,
)
from leaddesk.schemas.conversation import ConversationData, Message
from leaddesk.services.api_client import describe_error
from leaddesk.services.augmentation import ResponseAugmenter, extract_booking
from leaddesk.services.booking_registry import BookingFlowRegistry, conversation_key
from leaddesk.services.message_store import MessageStore
from leaddesk.services.notification_service import NotificationCenter
from leaddesk.services.reply_scheduler import ReplyScheduler, pick_smart_delay
from leaddesk.services.result import ErrorCode, Result
from leaddesk.services.scheduling_settings import SchedulingSettingsProvider

logger = get_logger("session_controller")

DEFAULT_DELAY_SECONDS = 8

BOOKING_FLOW_LABELS = {
    BookingMode.OFFERED: "Booking offered",
    BookingMode.AWAITING_NAME: "Waiting for name",
    BookingMode.AWAITING_PHONE: "Waiting for phone",
    BookingMode.AWAITING_SLOT_CHOICE: "Choosing a slot",
    BookingMode.AWAITING_CUSTOM_TIME: "Waiting for preferred time",
    BookingMode.CONFIRMED: "Appointment confirmed",
    BookingMode.BOOKING_SUCCESS: "Appointment confirmed",
    BookingMode.DECLINED: "Booking declined",
    BookingMode.NOT_AVAILABLE: "No slots available",
}


class ReplyMode(str, Enum):
    MANUAL = "manual"
    AUTOMATED = "automated"


@dataclass
class RenderedMessage:
    index: int
    message: Message
    booking_interactive: bool
    show_quick_replies: bool


def booking_flow_label(payload: Optional[BookingPayload]) -> Optional[str]:
    if payload is None:
        return None
    return BOOKING_FLOW_LABELS.get(payload.mode)


def _quick_replies(raw: Any) -> Optional[list[QuickReply]]:
    if not isinstance(raw, list):
        return None
    replies = []
    for item in raw:
        try:
            replies.append(QuickReply.model_validate(item))
        except ValidationError:
            logger.warning(f"Dropping malformed quick reply: {item!r}")
    return replies


class SessionController:
    """Drives one lead's chat thread.

    Every user-initiated action cancels the reply scheduler first, so at most one
    backend round-trip that touches the message store is in flight at a time.
    Use as an async context manager to guarantee the scheduler is released.
    """

    def __init__(
        self,
        api,
        lead_id: str,
        company_id: Optional[str] = None,
        registry: Optional[BookingFlowRegistry] = None,
        augmenter: Optional[ResponseAugmenter] = None,
        notifications: Optional[NotificationCenter] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        mode: Union[ReplyMode, str, None] = None,
        delay_seconds: Optional[int] = None,
        smart_delay: Optional[bool] = None,
        rng: Optional[random.Random] = None,
    ):
        self.api = api
        self.lead_id = lead_id
        self.company_id = company_id or getattr(api, "company_id", None) or settings.company_id
        if not self.company_id:
            raise ValueError("company_id is required")

        if registry is None:
            registry = augmenter.registry if augmenter is not None else BookingFlowRegistry()
        self.registry = registry
        self.augmenter = augmenter or ResponseAugmenter(
            registry, api=api, settings_provider=SchedulingSettingsProvider(api)
        )
        self.notifications = notifications or NotificationCenter()
        self.store = MessageStore(lead_id)
        self.scheduler = ReplyScheduler(self._scheduled_ai_reply, sleep=sleep)

        self.mode = ReplyMode(mode or settings.reply_mode)
        self.delay_seconds = DEFAULT_DELAY_SECONDS
        self.set_delay_seconds(delay_seconds if delay_seconds is not None else settings.reply_delay_seconds)
        self.smart_delay = settings.smart_delay_enabled if smart_delay is None else smart_delay
        self._rng = rng

        self.draft = ""
        self.sending = False
        self.ai_replying = False
        self.required_infos: list[dict] = []
        self.collected_infos: list[dict] = []

    async def __aenter__(self) -> "SessionController":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self.scheduler.aclose()

    @property
    def conversation_key(self) -> str:
        return conversation_key(self.store.conversation_id, self.lead_id)

    @property
    def countdown(self) -> Optional[int]:
        return self.scheduler.countdown

    @property
    def messages(self) -> list[Message]:
        return self.store.messages

    # --- loading -------------------------------------------------------

    async def load(self) -> Result[ConversationData]:
        try:
            raw = await self.api.get_conversation(self.company_id, self.lead_id)
        except Exception as e:
            self.notifications.error("Failed to load conversation", describe_error(e), {"lead_id": self.lead_id})
            return Result.failure(describe_error(e), ErrorCode.NO_CONVERSATION)
        return Result.success(self._replace(raw))

    async def refresh(self) -> Result[ConversationData]:
        return await self.load()

    def _replace(self, raw: Any) -> ConversationData:
        previous_key = self.conversation_key
        data = self.store.load(raw if isinstance(raw, (dict, ConversationData)) else {})
        if data.conversation_id:
            self.registry.adopt(previous_key, data.conversation_id)
        if isinstance(raw, dict):
            self._apply_response_fields(raw)
        return data

    def _apply_response_fields(self, res: dict) -> None:
        if isinstance(res.get("required_infos"), list):
            self.required_infos = res["required_infos"]
        elif isinstance(res.get("looking_for"), list):
            self.required_infos = res["looking_for"]
        if isinstance(res.get("collected_infos"), list):
            self.collected_infos = res["collected_infos"]
        elif isinstance(res.get("collected"), list):
            self.collected_infos = res["collected"]

    def _adopt_conversation_id(self, conversation_id: str) -> None:
        if conversation_id == self.store.conversation_id:
            return
        previous_key = self.conversation_key
        self.store.conversation_id = conversation_id
        self.registry.adopt(previous_key, conversation_id)
        logger.info(f"Lead {self.lead_id} bound to conversation {conversation_id}")

    async def _apply_backend_response(self, res: Any, last_user_message: Optional[str] = None) -> None:
        if isinstance(res, dict):
            self._apply_response_fields(res)

        final = await self.augmenter.augment(res, self.conversation_key, last_user_message)
        if not isinstance(final, dict):
            return

        if "assistant_message" not in final:
            self._replace(final)
            return

        if final.get("conversation_id"):
            self._adopt_conversation_id(str(final["conversation_id"]))
        self.store.append_assistant(
            final.get("assistant_message") or "",
            quick_replies=_quick_replies(final.get("quick_replies")),
            booking=extract_booking(final),
        )

    # --- sending -------------------------------------------------------

    async def send_text(self, content: Optional[str] = None) -> Result[Any]:
        text = (self.draft if content is None else content).strip()
        if not text:
            return Result.failure("Nothing to send", ErrorCode.EMPTY_MESSAGE)
        if self.sending:
            return Result.failure("A message is already being sent", ErrorCode.BUSY)
        return await self._send_user_message(text)

    async def _send_user_message(self, text: str) -> Result[Any]:
        self.sending = True
        self.draft = ""
        self.scheduler.cancel()
        optimistic = self.store.append_optimistic(text)
        try:
            try:
                res = await self.api.send_message(
                    self.company_id, self.lead_id, text, conversation_id=self.store.conversation_id
                )
            except Exception as e:
                self.store.rollback_last(optimistic)
                self.draft = text
                self.notifications.error("Failed to send message", describe_error(e), {"lead_id": self.lead_id})
                return Result.failure(describe_error(e), ErrorCode.SEND_FAILED)

            await self._apply_backend_response(res, text)
            if self.mode == ReplyMode.AUTOMATED:
                self.scheduler.start(self._next_delay())
            return Result.success(res)
        finally:
            self.sending = False

    async def select_quick_reply(self, reply: Union[QuickReply, dict]) -> Result[Any]:
        if not isinstance(reply, QuickReply):
            reply = QuickReply.model_validate(reply)
        if self.sending:
            return Result.failure("A message is already being sent", ErrorCode.BUSY)
        self.draft = reply.value
        self.store.clear_quick_replies()
        return await self.send_text()

    # --- AI replies ----------------------------------------------------

    async def trigger_ai_reply_now(self) -> Result[Any]:
        """Run the AI reply now, replacing any countdown or scheduled reply in flight."""
        await self.scheduler.aclose()
        return await self._run_ai_reply()

    async def _scheduled_ai_reply(self) -> None:
        await self._run_ai_reply()

    async def _run_ai_reply(self) -> Result[Any]:
        if self.ai_replying:
            return Result.failure("AI reply already in progress", ErrorCode.BUSY)
        self.ai_replying = True
        try:
            try:
                res = await self.api.ai_reply(self.company_id, self.lead_id)
            except Exception as e:
                self.notifications.error("Failed to get AI reply", describe_error(e), {"lead_id": self.lead_id})
                return Result.failure(describe_error(e), ErrorCode.AI_REPLY_FAILED)
            await self._apply_backend_response(res)
            return Result.success(res)
        finally:
            self.ai_replying = False

    def set_mode(self, mode: Union[ReplyMode, str]) -> None:
        self.mode = ReplyMode(mode)
        if self.mode == ReplyMode.MANUAL:
            self.scheduler.cancel()

    def set_delay_seconds(self, value: Any) -> int:
        try:
            seconds = int(value)
        except (TypeError, ValueError):
            seconds = DEFAULT_DELAY_SECONDS
        if seconds <= 0:
            seconds = DEFAULT_DELAY_SECONDS
        self.delay_seconds = max(settings.reply_delay_min_seconds, min(settings.reply_delay_max_seconds, seconds))
        return self.delay_seconds

    def _next_delay(self) -> int:
        if self.smart_delay:
            return pick_smart_delay(settings.smart_delay_low_seconds, settings.smart_delay_high_seconds, self._rng)
        return self.delay_seconds

    # --- booking -------------------------------------------------------

    def dismiss_booking(self) -> BookingDebugSnapshot:
        self.registry.dismiss(self.conversation_key)
        return self.booking_debug()

    def reset_booking_flow(self) -> BookingDebugSnapshot:
        self.registry.reset(self.conversation_key)
        return self.booking_debug()

    def apply_booking_update(self, index: int, payload: Union[BookingPayload, dict]) -> Result[Message]:
        """Patch a message's booking after an in-panel action."""
        booking = decode_booking_payload(payload)
        if booking is None:
            return Result.failure("Booking update has no mode", ErrorCode.BOOKING_FAILED)
        try:
            message = self.store.patch_booking_at(index, booking)
        except IndexError as e:
            return Result.failure(str(e), ErrorCode.INVALID_INDEX)

        if booking.is_confirmation:
            self.registry.mark_completed(self.conversation_key, booking.booked_appointment_id)
        elif booking.mode == BookingMode.DECLINED:
            self.registry.dismiss(self.conversation_key)
        return Result.success(message)

    async def book_slot(self, index: int, slot: Union[BookingSlot, dict]) -> Result[Message]:
        if not isinstance(slot, BookingSlot):
            slot = BookingSlot.model_validate(slot)
        try:
            current = self.store.message_at(index).booking
        except IndexError as e:
            return Result.failure(str(e), ErrorCode.INVALID_INDEX)

        try:
            res = await self.api.book_slot(
                self.company_id,
                self.lead_id,
                start=slot.start,
                end=slot.end,
                slot_id=slot.id,
                conversation_id=self.store.conversation_id,
                appointment_type=current.appointment_type if current else None,
                timezone=(current.timezone if current else None) or slot.timezone,
            )
        except Exception as e:
            self.notifications.error("Booking failed", describe_error(e), {"lead_id": self.lead_id})
            return Result.failure(describe_error(e), ErrorCode.BOOKING_FAILED)

        updated = extract_booking(res)
        if updated is None:
            base = current.model_dump() if current else {}
            updated = BookingPayload.model_validate({**base, "mode": BookingMode.CONFIRMED.value, "confirmed_slot": slot.model_dump()})
        self.notifications.info("Appointment booked")
        return self.apply_booking_update(index, updated)

    # --- voice & attachments -------------------------------------------

    async def send_voice(self, audio: bytes, filename: str = "voice.webm", mime_type: str = "audio/webm") -> Result[Any]:
        if not audio:
            return Result.failure("Recording is empty", ErrorCode.EMPTY_MESSAGE)
        self.scheduler.cancel()
        try:
            res = await self.api.send_voice_message(self.conversation_key, audio, filename=filename, mime_type=mime_type)
        except Exception as e:
            self.notifications.error("Failed to send voice message", describe_error(e), {"lead_id": self.lead_id})
            return Result.failure(describe_error(e), ErrorCode.VOICE_FAILED)

        if res:
            transcript = res.get("transcript") if isinstance(res, dict) else None
            await self._apply_backend_response(res, transcript)
        if self.mode == ReplyMode.AUTOMATED:
            self.scheduler.start(self._next_delay())
        return Result.success(res)

    async def upload_pictures(self, files: Iterable[tuple[str, bytes, str]]) -> Result[int]:
        """Upload each file; failures are reported one by one."""
        uploaded = 0
        for filename, content, mime_type in files:
            try:
                await self.api.upload_attachment(self.lead_id, filename, content, mime_type)
                uploaded += 1
            except Exception as e:
                self.notifications.error("Upload failed", f"{filename}: {describe_error(e)}", {"lead_id": self.lead_id})

        if not uploaded:
            return Result.failure("No pictures were uploaded", ErrorCode.UPLOAD_FAILED)

        text = f"Uploaded {uploaded} picture{'s' if uploaded > 1 else ''}."
        try:
            res = await self.api.send_message(
                self.company_id, self.lead_id, text, conversation_id=self.store.conversation_id
            )
            await self._apply_backend_response(res)
        except Exception as e:
            logger.warning(f"Upload follow-up message failed for lead {self.lead_id}: {e}")

        try:
            raw = await self.api.get_conversation(self.company_id, self.lead_id)
            if raw:
                self._replace(raw)
        except Exception as e:
            logger.warning(f"Conversation refresh after upload failed for lead {self.lead_id}: {e}")
        return Result.success(uploaded)

    # --- derived render state ------------------------------------------

    def active_booking_index(self) -> Optional[int]:
        """Index of the one message whose booking panel is interactive, if any."""
        messages = self.store.messages
        for index in range(len(messages) - 1, -1, -1):
            message = messages[index]
            if message.is_user or message.booking is None:
                continue
            flow = self.registry.get_flow(self.conversation_key)
            if not flow.terminal or message.booking.is_confirmation:
                return index
            return None
        return None

    def render_messages(self) -> list[RenderedMessage]:
        active = self.active_booking_index()
        return [
            RenderedMessage(
                index=index,
                message=message,
                booking_interactive=index == active,
                show_quick_replies=not message.is_user and bool(message.quick_replies),
            )
            for index, message in enumerate(self.store.messages)
        ]

    def booking_debug(self) -> BookingDebugSnapshot:
        return self.registry.snapshot(self.conversation_key)

    def booking_flow_label(self) -> Optional[str]:
        for message in reversed(self.store.messages):
            label = booking_flow_label(message.booking)
            if label:
                return label
        return None

    @property
    def pictures_required(self) -> bool:
        return any(str(item.get("name") or "").lower() == "pictures" for item in self.required_infos)

    @property
    def pictures_collected(self) -> list[str]:
        for item in self.collected_infos:
            name = str(item.get("field_name") or item.get("name") or "").lower()
            if name == "pictures":
                value = item.get("value")
                return [v for v in value if isinstance(v, str)] if isinstance(value, list) else []
        return []
