from collections import deque
from enum import Enum
from typing import Optional


class BookingStage(str, Enum):
    IDLE = "idle"
    OFFERED = "offered"
    AWAITING_NAME = "awaiting_name"
    AWAITING_PHONE = "awaiting_phone"
    AWAITING_SLOT_CHOICE = "awaiting_slot_choice"
    AWAITING_CUSTOM_TIME = "awaiting_custom_time"
    DECLINED = "declined"
    COMPLETED = "completed"


TERMINAL_STAGES = {BookingStage.DECLINED, BookingStage.COMPLETED}

# Terminal stages have no outgoing edges; only an explicit reset leaves them.
VALID_TRANSITIONS = {
    BookingStage.IDLE: [BookingStage.OFFERED, BookingStage.DECLINED],
    BookingStage.OFFERED: [
        BookingStage.AWAITING_NAME,
        BookingStage.AWAITING_PHONE,
        BookingStage.AWAITING_SLOT_CHOICE,
        BookingStage.AWAITING_CUSTOM_TIME,
        BookingStage.DECLINED,
    ],
    BookingStage.AWAITING_NAME: [
        BookingStage.AWAITING_PHONE,
        BookingStage.AWAITING_SLOT_CHOICE,
        BookingStage.OFFERED,
        BookingStage.DECLINED,
    ],
    BookingStage.AWAITING_PHONE: [
        BookingStage.AWAITING_SLOT_CHOICE,
        BookingStage.OFFERED,
        BookingStage.DECLINED,
    ],
    BookingStage.AWAITING_SLOT_CHOICE: [
        BookingStage.AWAITING_CUSTOM_TIME,
        BookingStage.COMPLETED,
        BookingStage.DECLINED,
    ],
    BookingStage.AWAITING_CUSTOM_TIME: [
        BookingStage.AWAITING_SLOT_CHOICE,
        BookingStage.COMPLETED,
        BookingStage.DECLINED,
    ],
    BookingStage.DECLINED: [],
    BookingStage.COMPLETED: [],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_stage: BookingStage, to_stage: BookingStage):
        self.from_stage = from_stage
        self.to_stage = to_stage
        super().__init__(f"Invalid booking transition: {from_stage.value} -> {to_stage.value}")


def is_terminal(stage: BookingStage) -> bool:
    return stage in TERMINAL_STAGES


def can_transition(from_stage: BookingStage, to_stage: BookingStage) -> bool:
    """Check if transition is valid."""
    return to_stage in VALID_TRANSITIONS.get(from_stage, [])


def transition(from_stage: BookingStage, to_stage: BookingStage) -> BookingStage:
    """Perform stage transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_stage, to_stage):
        raise InvalidTransitionError(from_stage, to_stage)
    return to_stage


def transition_path(from_stage: BookingStage, to_stage: BookingStage) -> Optional[list[BookingStage]]:
    """Shortest chain of legal stages leading to to_stage (excluding from_stage).

    Returns [] when already there and None when to_stage is unreachable.
    """
    if from_stage == to_stage:
        return []
    previous: dict[BookingStage, BookingStage] = {}
    queue = deque([from_stage])
    while queue:
        stage = queue.popleft()
        for nxt in VALID_TRANSITIONS.get(stage, []):
            if nxt in previous or nxt == from_stage:
                continue
            previous[nxt] = stage
            if nxt == to_stage:
                path = [nxt]
                while previous[path[-1]] != from_stage:
                    path.append(previous[path[-1]])
                return list(reversed(path))
            queue.append(nxt)
    return None


def offer(current: BookingStage) -> BookingStage:
    """A booking offer was surfaced to the lead."""
    return transition(current, BookingStage.OFFERED)


def present_slots(current: BookingStage) -> BookingStage:
    """Slot options are on screen, waiting for a pick."""
    return transition(current, BookingStage.AWAITING_SLOT_CHOICE)


def decline(current: BookingStage) -> BookingStage:
    """Lead dismissed the booking panel."""
    return transition(current, BookingStage.DECLINED)


def complete(current: BookingStage) -> BookingStage:
    """Appointment confirmed."""
    return transition(current, BookingStage.COMPLETED)
