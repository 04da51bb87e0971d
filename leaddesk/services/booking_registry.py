from dataclasses import dataclass, field
from typing import Optional

from leaddesk.logging_config import get_logger
from leaddesk.schemas.booking import BookingDebugSnapshot, BookingSlot
from leaddesk.services.booking_state_machine import (
    BookingStage,
    InvalidTransitionError,
    complete,
    decline,
    is_terminal,
    offer,
    present_slots,
    transition,
    transition_path,
)

logger = get_logger("booking_registry")

ACTIVE_STAGES = {
    BookingStage.OFFERED,
    BookingStage.AWAITING_NAME,
    BookingStage.AWAITING_PHONE,
    BookingStage.AWAITING_SLOT_CHOICE,
    BookingStage.AWAITING_CUSTOM_TIME,
}

# Named steps for the stages that have one; other moves go through transition().
STAGE_STEPS = {
    BookingStage.OFFERED: offer,
    BookingStage.AWAITING_SLOT_CHOICE: present_slots,
    BookingStage.DECLINED: decline,
    BookingStage.COMPLETED: complete,
}


def conversation_key(conversation_id: Optional[str], lead_id: Optional[str]) -> str:
    """conversationId once the backend assigned one, leadId before that."""
    return conversation_id or lead_id or ""


@dataclass
class BookingFlowState:
    stage: BookingStage = BookingStage.IDLE
    offer_shown: bool = False
    completed: bool = False
    reason: Optional[str] = None
    appointment_id: Optional[str] = None
    requested_type: str = "call"
    offered_slots: list[BookingSlot] = field(default_factory=list)
    proposed_custom_time: Optional[str] = None
    name_collected: bool = False
    phone_collected: bool = False

    @property
    def terminal(self) -> bool:
        return self.completed or is_terminal(self.stage)

    @property
    def active(self) -> bool:
        return self.stage in ACTIVE_STAGES


class BookingFlowRegistry:
    """Per-conversation booking flows for one browsing session.

    Entries are created on first access and then only ever mutated in place,
    so every reader holding a flow sees the latest stage.
    """

    def __init__(self):
        self._flows: dict[str, BookingFlowState] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._flows

    def keys(self) -> list[str]:
        return list(self._flows)

    def get_flow(self, key: str) -> BookingFlowState:
        flow = self._flows.get(key)
        if flow is None:
            flow = BookingFlowState()
            self._flows[key] = flow
        return flow

    def adopt(self, previous_key: str, new_key: str) -> BookingFlowState:
        """Carry a lead-keyed flow over once the backend assigns a conversation id."""
        if previous_key and previous_key != new_key and previous_key in self._flows and new_key not in self._flows:
            self._flows[new_key] = self._flows[previous_key]
            logger.debug(f"Booking flow {previous_key} now also keyed as {new_key}")
        return self.get_flow(new_key)

    def advance(self, key: str, to_stage: BookingStage, reason: str) -> BookingFlowState:
        """Single legal step. Raises InvalidTransitionError otherwise."""
        flow = self.get_flow(key)
        if flow.stage == to_stage:
            flow.reason = reason
            return flow
        from_stage = flow.stage
        step = STAGE_STEPS.get(to_stage)
        flow.stage = step(from_stage) if step else transition(from_stage, to_stage)
        self._apply_stage_flags(flow, reason)
        logger.info(f"Booking flow {key}: {from_stage.value} -> {to_stage.value} ({reason})")
        return flow

    def advance_to(self, key: str, target: BookingStage, reason: str) -> BookingFlowState:
        """Walk the shortest legal chain of stages to target."""
        flow = self.get_flow(key)
        path = transition_path(flow.stage, target)
        if path is None:
            raise InvalidTransitionError(flow.stage, target)
        for stage in path:
            self.advance(key, stage, reason)
        flow.reason = reason
        return flow

    def dismiss(self, key: str, reason: str = "user_dismissed") -> BookingFlowState:
        flow = self.get_flow(key)
        if flow.terminal:
            logger.debug(f"Booking flow {key} already {flow.stage.value}, dismiss ignored")
            return flow
        return self.advance(key, BookingStage.DECLINED, reason)

    def mark_completed(
        self, key: str, appointment_id: Optional[str] = None, reason: str = "slot_confirmed"
    ) -> BookingFlowState:
        flow = self.get_flow(key)
        if flow.stage == BookingStage.DECLINED:
            logger.warning(f"Booking flow {key} was declined, completion ignored")
            return flow
        if flow.stage != BookingStage.COMPLETED:
            self.advance_to(key, BookingStage.COMPLETED, reason)
        if appointment_id:
            flow.appointment_id = appointment_id
        return flow

    def reset(self, key: str) -> BookingFlowState:
        """Operator escape hatch: back to idle, same object."""
        flow = self.get_flow(key)
        flow.stage = BookingStage.IDLE
        flow.offer_shown = False
        flow.completed = False
        flow.reason = "reset"
        flow.appointment_id = None
        flow.offered_slots = []
        flow.proposed_custom_time = None
        flow.name_collected = False
        flow.phone_collected = False
        logger.info(f"Booking flow {key} reset")
        return flow

    def snapshot(self, key: str) -> BookingDebugSnapshot:
        flow = self.get_flow(key)
        return BookingDebugSnapshot(
            offered=flow.offer_shown,
            awaiting_slot_selection=flow.stage == BookingStage.AWAITING_SLOT_CHOICE,
            dismissed=flow.stage == BookingStage.DECLINED,
            booked_appointment_id=flow.appointment_id,
            stage_reason=flow.reason,
        )

    @staticmethod
    def _apply_stage_flags(flow: BookingFlowState, reason: str) -> None:
        flow.reason = reason
        if flow.stage == BookingStage.OFFERED:
            flow.offer_shown = True
        elif flow.stage == BookingStage.COMPLETED:
            flow.completed = True
        elif flow.stage == BookingStage.DECLINED:
            flow.completed = False
