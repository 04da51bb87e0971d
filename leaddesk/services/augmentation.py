"""Merge backend replies with the per-conversation booking flow.

Augmentation is best effort: whatever goes wrong in here, the caller still
gets a reply it can display.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from leaddesk.config import settings as app_settings
from leaddesk.logging_config import conversation_logger, get_logger
from leaddesk.schemas.booking import BookingMode, BookingPayload, BookingSlot, QuickReply, decode_booking_payload
from leaddesk.services.api_client import ApiError
from leaddesk.services.booking_intent import (
    BookingIntentClassifier,
    BookingSignal,
    KeywordBookingClassifier,
    looks_like_name,
    looks_like_phone,
)
from leaddesk.services.booking_registry import BookingFlowRegistry, BookingFlowState
from leaddesk.services.booking_state_machine import BookingStage, InvalidTransitionError
from leaddesk.services.scheduling_settings import (
    SchedulingSettings,
    StaticSettingsProvider,
    generate_slots_from_working_hours,
)

logger = get_logger("augmentation")

# Where a backend may put its own booking payload, highest priority first.
BOOKING_LOCATIONS = (
    ("booking",),
    ("meta", "booking"),
    ("ui_action", "booking"),
)

MODE_STAGES = {
    BookingMode.OFFERED: BookingStage.OFFERED,
    BookingMode.AWAITING_NAME: BookingStage.AWAITING_NAME,
    BookingMode.AWAITING_PHONE: BookingStage.AWAITING_PHONE,
    BookingMode.AWAITING_SLOT_CHOICE: BookingStage.AWAITING_SLOT_CHOICE,
    BookingMode.AWAITING_CUSTOM_TIME: BookingStage.AWAITING_CUSTOM_TIME,
    BookingMode.CONFIRMED: BookingStage.COMPLETED,
    BookingMode.BOOKING_SUCCESS: BookingStage.COMPLETED,
    BookingMode.DECLINED: BookingStage.DECLINED,
}

PROPOSE_TIME_ACTION = QuickReply(label="Propose a time", value="I'd like to propose a time")


def extract_booking(reply: Any) -> Optional[BookingPayload]:
    """First usable booking payload found in BOOKING_LOCATIONS order."""
    if not isinstance(reply, dict):
        return None
    for path in BOOKING_LOCATIONS:
        node: Any = reply
        for part in path:
            node = node.get(part) if isinstance(node, dict) else None
        payload = decode_booking_payload(node)
        if payload is not None:
            return payload
    return None


def reply_text(reply: Any) -> str:
    if isinstance(reply, dict):
        return reply.get("assistant_message") or ""
    return ""


def _required_fields_collected(reply: dict) -> bool:
    required = reply.get("required_infos")
    if required is None:
        required = reply.get("looking_for")
    return isinstance(required, list) and len(required) == 0


def _join_text(existing: str, addition: str) -> str:
    return f"{existing}\n\n{addition}" if existing else addition


def _parse_slots(raw: Any) -> list[BookingSlot]:
    if isinstance(raw, dict):
        raw = raw.get("slots") if isinstance(raw.get("slots"), list) else raw.get("data")
    if not isinstance(raw, list):
        return []
    return [BookingSlot.model_validate(item) for item in raw if isinstance(item, dict)]


class ResponseAugmenter:
    def __init__(
        self,
        registry: BookingFlowRegistry,
        classifier: Optional[BookingIntentClassifier] = None,
        settings_provider=None,
        api=None,
        slot_count: Optional[int] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.registry = registry
        self.classifier = classifier or KeywordBookingClassifier()
        self.settings_provider = settings_provider or StaticSettingsProvider()
        self.api = api
        self.slot_count = slot_count or app_settings.offered_slot_count
        self._now = now or (lambda: datetime.now(timezone.utc))

    async def augment(self, reply: Any, key: str, last_user_message: Optional[str] = None) -> Any:
        """Return the reply, possibly enriched with a booking payload.

        The flow stage is updated before the enriched reply is returned.
        """
        try:
            return await self._augment(reply, key, last_user_message)
        except Exception:
            logger.exception(f"Booking augmentation failed for {key}, using backend reply as is")
            return reply

    async def _augment(self, reply: Any, key: str, last_user_message: Optional[str]) -> Any:
        if not isinstance(reply, dict):
            return reply

        log = conversation_logger("augmentation", key)
        flow = self.registry.get_flow(key)
        if flow.terminal:
            log.debug(f"Booking flow is {flow.stage.value}, skipping augmentation")
            return reply

        backend_booking = extract_booking(reply)
        if backend_booking is not None:
            self._sync_with_backend(key, backend_booking)
            return reply

        if "assistant_message" not in reply:
            return reply

        scheduling = await self.settings_provider.get()
        if not scheduling.offers_booking:
            return reply

        if flow.active:
            if last_user_message:
                handled = await self._continue_flow(flow, key, scheduling, last_user_message, reply)
                if handled is not None:
                    return handled
            return reply

        if flow.offer_shown:
            return reply

        if self._has_intent(last_user_message) or self._has_intent(reply_text(reply)):
            return await self._start_flow(key, scheduling, reply, reason="intent_detected")

        if scheduling.ask_after_quote and _required_fields_collected(reply):
            return await self._start_flow(key, scheduling, reply, reason="quote_complete")

        return reply

    def _has_intent(self, text: Optional[str]) -> bool:
        return bool(text) and BookingSignal.BOOKING_INTENT in self.classifier.classify(text)

    def _sync_with_backend(self, key: str, payload: BookingPayload) -> None:
        """The backend's own booking indication wins over local heuristics."""
        target = MODE_STAGES.get(payload.mode)
        if target is None:
            return
        if target == BookingStage.COMPLETED:
            self.registry.mark_completed(key, payload.booked_appointment_id, reason="backend_confirmed")
            return
        if target == BookingStage.DECLINED:
            self.registry.dismiss(key, reason="backend_declined")
            return
        try:
            flow = self.registry.advance_to(key, target, reason="backend_payload")
        except InvalidTransitionError as e:
            logger.info(f"Backend booking mode {payload.mode.value} ignored for {key}: {e}")
            return
        if target == BookingStage.AWAITING_SLOT_CHOICE:
            flow.offered_slots = list(payload.slots)

    async def _start_flow(
        self,
        key: str,
        scheduling: SchedulingSettings,
        reply: dict,
        reason: str,
        name_collected: bool = False,
        phone_collected: bool = False,
    ) -> dict:
        """Offer a booking.

        Every await happens before the flow is touched, so a cancelled slot
        lookup leaves the flow as it was.
        """
        flow = self.registry.get_flow(key)
        need_name = scheduling.require_name and not (flow.name_collected or name_collected)
        need_phone = scheduling.require_phone and not (flow.phone_collected or phone_collected)
        slots: list[BookingSlot] = []
        if not need_name and not need_phone and scheduling.show_available_slots:
            slots = await self._load_slots(scheduling)

        flow.name_collected = flow.name_collected or name_collected
        flow.phone_collected = flow.phone_collected or phone_collected
        flow.requested_type = scheduling.default_booking_type
        self.registry.advance(key, BookingStage.OFFERED, reason)

        if need_name:
            self.registry.advance(key, BookingStage.AWAITING_NAME, "name_required")
            return self._with_booking(
                reply,
                self._payload(BookingMode.AWAITING_NAME, flow, scheduling),
                _join_text(reply_text(reply), "Before we schedule, could you share your name?"),
            )

        if need_phone:
            self.registry.advance(key, BookingStage.AWAITING_PHONE, "phone_required")
            return self._with_booking(
                reply,
                self._payload(BookingMode.AWAITING_PHONE, flow, scheduling),
                _join_text(reply_text(reply), "Could you share your phone number so we can reach you?"),
            )

        type_label = scheduling.default_booking_type.replace("_", " ")

        if slots:
            self.registry.advance(key, BookingStage.AWAITING_SLOT_CHOICE, "slots_presented")
            flow.offered_slots = slots
            payload = self._payload(BookingMode.AWAITING_SLOT_CHOICE, flow, scheduling, slots=slots)
            if scheduling.allow_custom_time:
                payload.quick_actions = [PROPOSE_TIME_ACTION]
            text = f"I have some available times for a {type_label}. Would you like to pick a slot?"
        else:
            payload = self._payload(BookingMode.OFFERED, flow, scheduling)
            payload.quick_actions = [
                *([QuickReply(label="Show available slots", value="Show available slots")] if scheduling.show_available_slots else []),
                *([PROPOSE_TIME_ACTION] if scheduling.allow_custom_time else []),
                QuickReply(label=f"Yes, book a {type_label}", value=f"Yes, book a {type_label}"),
                QuickReply(label="Not now", value="Not now"),
            ]
            text = f"Would you like to schedule a {type_label}?"

        return self._with_booking(reply, payload, _join_text(reply_text(reply), text))

    async def _continue_flow(
        self,
        flow: BookingFlowState,
        key: str,
        scheduling: SchedulingSettings,
        user_message: str,
        reply: dict,
    ) -> Optional[dict]:
        signals = self.classifier.classify(user_message)
        message = user_message.strip()

        if BookingSignal.DECLINE in signals:
            self.registry.dismiss(key, reason="user_declined")
            out = self._with_booking(reply, BookingPayload(mode=BookingMode.DECLINED))
            out.pop("quick_replies", None)
            return out

        if flow.stage == BookingStage.AWAITING_NAME and looks_like_name(message):
            if scheduling.require_phone and not flow.phone_collected:
                flow.name_collected = True
                self.registry.advance(key, BookingStage.AWAITING_PHONE, "name_collected")
                return self._with_booking(
                    reply,
                    self._payload(BookingMode.AWAITING_PHONE, flow, scheduling),
                    _join_text(reply_text(reply), "Thanks! Could you also share your phone number?"),
                )
            return await self._start_flow(key, scheduling, reply, reason="name_collected", name_collected=True)

        if flow.stage == BookingStage.AWAITING_PHONE and looks_like_phone(message):
            return await self._start_flow(key, scheduling, reply, reason="phone_collected", phone_collected=True)

        if BookingSignal.SHOW_SLOTS in signals:
            slots = await self._load_slots(scheduling)
            if not slots:
                return self._with_booking(
                    reply,
                    self._payload(BookingMode.NOT_AVAILABLE, flow, scheduling),
                    "I couldn't find available slots right now.",
                )
            self.registry.advance_to(key, BookingStage.AWAITING_SLOT_CHOICE, "slots_requested")
            flow.offered_slots = slots
            return self._with_booking(
                reply,
                self._payload(BookingMode.AWAITING_SLOT_CHOICE, flow, scheduling, slots=slots),
                "Here are some available times:",
            )

        if BookingSignal.PROPOSE_TIME in signals and flow.stage != BookingStage.AWAITING_CUSTOM_TIME:
            self.registry.advance_to(key, BookingStage.AWAITING_CUSTOM_TIME, "custom_time_requested")
            return self._with_booking(
                reply,
                self._payload(BookingMode.AWAITING_CUSTOM_TIME, flow, scheduling),
                reply_text(reply) or "When would work best for you?",
            )

        if BookingSignal.ACCEPT in signals and flow.stage == BookingStage.OFFERED:
            slots = await self._load_slots(scheduling)
            if slots:
                self.registry.advance(key, BookingStage.AWAITING_SLOT_CHOICE, "offer_accepted")
                flow.offered_slots = slots
                return self._with_booking(
                    reply,
                    self._payload(BookingMode.AWAITING_SLOT_CHOICE, flow, scheduling, slots=slots),
                    "Here are some available times:",
                )
            self.registry.advance(key, BookingStage.AWAITING_CUSTOM_TIME, "offer_accepted")
            return self._with_booking(
                reply,
                self._payload(BookingMode.AWAITING_CUSTOM_TIME, flow, scheduling),
                "When would work best for you?",
            )

        if flow.stage == BookingStage.AWAITING_CUSTOM_TIME and len(message) >= 3:
            flow.proposed_custom_time = message
            self.registry.advance(key, BookingStage.COMPLETED, "custom_time_proposed")
            payload = self._payload(BookingMode.CONFIRMED, flow, scheduling)
            payload.appointment = {"type": flow.requested_type, "status": "pending_confirmation"}
            payload.summary = {"type": flow.requested_type, "date": message, "timezone": scheduling.timezone}
            return self._with_booking(
                reply,
                payload,
                _join_text(
                    reply_text(reply),
                    f'Got it, I\'ve noted your preference for "{message}". '
                    "Our team will confirm the exact time shortly.",
                ),
            )

        return None

    async def _load_slots(self, scheduling: SchedulingSettings) -> list[BookingSlot]:
        """Slots from the availability endpoint, else generated from working hours."""
        now = self._now()
        if self.api is not None:
            try:
                raw = await self.api.get_available_slots(
                    appointment_type=scheduling.default_booking_type,
                    date_from=now.date().isoformat(),
                    date_to=(now + timedelta(days=scheduling.max_days_ahead)).date().isoformat(),
                )
                return _parse_slots(raw)[: self.slot_count]
            except (ApiError, ValueError) as e:
                logger.warning(f"Availability lookup failed, generating slots locally: {e}")
        return generate_slots_from_working_hours(scheduling, self.slot_count, now=now)

    @staticmethod
    def _payload(
        mode: BookingMode,
        flow: BookingFlowState,
        scheduling: SchedulingSettings,
        slots: Optional[list[BookingSlot]] = None,
    ) -> BookingPayload:
        return BookingPayload(
            mode=mode,
            slots=slots or [],
            appointment_type=flow.requested_type,
            timezone=scheduling.timezone,
        )

    @staticmethod
    def _with_booking(reply: dict, payload: BookingPayload, text: Optional[str] = None) -> dict:
        out = dict(reply)
        out["booking"] = payload.model_dump(mode="json", exclude_none=True)
        if text is not None:
            out["assistant_message"] = text
        if payload.quick_actions and not out.get("quick_replies"):
            out["quick_replies"] = [action.model_dump() for action in payload.quick_actions]
        return out
