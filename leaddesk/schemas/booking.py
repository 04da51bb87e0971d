from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from leaddesk.logging_config import get_logger

logger = get_logger("schemas.booking")


class QuickReply(BaseModel):
    label: str
    value: str


class BookingMode(str, Enum):
    OFFERED = "offered"
    AWAITING_NAME = "awaiting_name"
    AWAITING_PHONE = "awaiting_phone"
    AWAITING_SLOT_CHOICE = "awaiting_slot_choice"
    AWAITING_CUSTOM_TIME = "awaiting_custom_time"
    CONFIRMED = "confirmed"
    BOOKING_SUCCESS = "booking_success"
    DECLINED = "declined"
    NOT_AVAILABLE = "not_available"


CONFIRMATION_MODES = {BookingMode.CONFIRMED, BookingMode.BOOKING_SUCCESS}

# Older backends still send the short names.
LEGACY_MODE_NAMES = {
    "offer": BookingMode.OFFERED.value,
    "slots": BookingMode.AWAITING_SLOT_CHOICE.value,
}


class BookingSlot(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    start: Optional[str] = Field(default=None, validation_alias=AliasChoices("start", "startAt", "start_at"))
    end: Optional[str] = Field(default=None, validation_alias=AliasChoices("end", "endAt", "end_at"))
    label: Optional[str] = None
    timezone: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None


class BookingPayload(BaseModel):
    """UI-facing booking state attached to one assistant message."""

    model_config = ConfigDict(extra="allow")

    mode: BookingMode
    slots: list[BookingSlot] = Field(default_factory=list)
    appointment_type: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("appointment_type", "appointmentType")
    )
    timezone: Optional[str] = None
    appointment_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("appointment_id", "appointmentId")
    )
    appointment: Optional[dict[str, Any]] = None
    confirmed_slot: Optional[BookingSlot] = Field(
        default=None, validation_alias=AliasChoices("confirmed_slot", "confirmedSlot")
    )
    quick_actions: list[QuickReply] = Field(
        default_factory=list, validation_alias=AliasChoices("quick_actions", "quickActions")
    )
    message: Optional[str] = None
    summary: Optional[dict[str, Any]] = None
    debug: Optional[dict[str, Any]] = None

    @field_validator("mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value):
        if isinstance(value, str):
            return LEGACY_MODE_NAMES.get(value, value)
        return value

    @field_validator("slots", "quick_actions", mode="before")
    @classmethod
    def _none_to_list(cls, value):
        return value if value is not None else []

    @property
    def is_confirmation(self) -> bool:
        return self.mode in CONFIRMATION_MODES

    @property
    def booked_appointment_id(self) -> Optional[str]:
        if self.appointment_id:
            return self.appointment_id
        if self.appointment and self.appointment.get("id"):
            return str(self.appointment["id"])
        return None


def decode_booking_payload(value: Any) -> Optional[BookingPayload]:
    """Return a payload for anything carrying a usable mode, else None."""
    if isinstance(value, BookingPayload):
        return value
    if not isinstance(value, dict) or not value.get("mode"):
        return None
    try:
        return BookingPayload.model_validate(value)
    except ValidationError as e:
        logger.warning(f"Ignoring malformed booking payload: {e.error_count()} error(s), mode={value.get('mode')!r}")
        return None


class BookingDebugSnapshot(BaseModel):
    """Read-only view of one conversation's booking flow for the debug panel."""

    model_config = ConfigDict(populate_by_name=True)

    offered: bool = False
    awaiting_slot_selection: bool = Field(default=False, alias="awaitingSlotSelection")
    dismissed: bool = False
    booked_appointment_id: Optional[str] = Field(default=None, alias="bookedAppointmentId")
    stage_reason: Optional[str] = Field(default=None, alias="stageReason")
