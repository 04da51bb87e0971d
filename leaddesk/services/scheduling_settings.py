import math
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field

from leaddesk.config import settings as app_settings
from leaddesk.logging_config import get_logger
from leaddesk.schemas.booking import BookingSlot
from leaddesk.services.api_client import ApiError

logger = get_logger("scheduling_settings")

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
MAX_SLOT_SCAN_STEPS = 500


class WorkingRange(BaseModel):
    start: str = "09:00"
    end: str = "17:00"


class WorkingDay(BaseModel):
    day: str
    enabled: bool = False
    ranges: list[WorkingRange] = Field(default_factory=list)


class SchedulingSettings(BaseModel):
    enabled: bool = True
    chatbot_offer_booking: bool = True
    ask_after_quote: bool = False
    require_name: bool = False
    require_phone: bool = False
    booking_mode: str = "manual_request"
    default_booking_type: str = "call"
    show_available_slots: bool = False
    allow_custom_time: bool = False
    timezone: str = "UTC"
    slot_duration_minutes: int = 30
    minimum_notice_hours: float = 1
    max_days_ahead: int = 30
    working_hours: list[WorkingDay] = Field(default_factory=list)

    @property
    def offers_booking(self) -> bool:
        return self.enabled and self.chatbot_offer_booking


def _pick(fallback: Any, *candidates: Any) -> Any:
    for candidate in candidates:
        if candidate is not None:
            return candidate
    return fallback


def _normalize_ranges(value: Any) -> list[WorkingRange]:
    if not isinstance(value, list):
        return []
    ranges = []
    for item in value:
        item = item if isinstance(item, dict) else {}
        ranges.append(WorkingRange(start=item.get("start") or "09:00", end=item.get("end") or "17:00"))
    return ranges


def _normalize_working_hours(raw: Any) -> list[WorkingDay]:
    if isinstance(raw, list):
        entries = [(str((item or {}).get("day") or ""), item or {}) for item in raw if isinstance(item, dict)]
    elif isinstance(raw, dict):
        entries = [(str(day), value if isinstance(value, dict) else {}) for day, value in raw.items()]
    else:
        return []
    return [
        WorkingDay(day=day.lower(), enabled=bool(value.get("enabled")), ranges=_normalize_ranges(value.get("ranges")))
        for day, value in entries
    ]


def normalize_scheduling_settings(raw: Optional[dict]) -> SchedulingSettings:
    """Flatten the backend's settings document; the first non-null spelling wins."""
    if not raw:
        return SchedulingSettings(enabled=False, chatbot_offer_booking=False)

    cb = raw.get("chatbot_booking") if isinstance(raw.get("chatbot_booking"), dict) else {}

    return SchedulingSettings(
        enabled=bool(_pick(False, raw.get("scheduling_enabled"), raw.get("enabled"))),
        chatbot_offer_booking=bool(
            _pick(
                False,
                raw.get("chatbotOfferBooking"),
                raw.get("chatbot_offers_booking"),
                cb.get("chatbot_booking_enabled"),
                cb.get("enabled"),
                raw.get("chatbot_booking_enabled"),
            )
        ),
        ask_after_quote=bool(
            _pick(False, raw.get("chatbotCollectBookingAfterQuote"), cb.get("ask_after_quote"), raw.get("ask_after_quote"))
        ),
        require_name=bool(
            _pick(False, raw.get("chatbotBookingRequiresName"), cb.get("require_name"), raw.get("require_name"))
        ),
        require_phone=bool(
            _pick(False, raw.get("chatbotBookingRequiresPhone"), cb.get("require_phone"), raw.get("require_phone"))
        ),
        booking_mode=str(_pick("manual_request", cb.get("booking_mode"), raw.get("booking_mode"))),
        default_booking_type=str(_pick("call", cb.get("default_booking_type"), raw.get("default_booking_type"))),
        show_available_slots=bool(
            _pick(
                False,
                raw.get("chatbotShowSlotsWhenAvailable"),
                cb.get("show_available_slots"),
                raw.get("show_available_slots"),
            )
        ),
        allow_custom_time=bool(
            _pick(False, raw.get("chatbotAllowUserProposedTime"), cb.get("allow_custom_time"), raw.get("allow_custom_time"))
        ),
        timezone=str(_pick("UTC", raw.get("timezone"))),
        slot_duration_minutes=int(_pick(30, raw.get("slot_duration_minutes"), raw.get("slotDurationMinutes"))),
        minimum_notice_hours=float(_pick(1, raw.get("minimum_notice_hours"), raw.get("minimumNoticeHours"))),
        max_days_ahead=int(_pick(30, raw.get("max_days_ahead"), raw.get("maxDaysAhead"))),
        working_hours=_normalize_working_hours(raw.get("working_hours") or raw.get("workingHours")),
    )


def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {name!r}, falling back to UTC")
        return ZoneInfo("UTC")


def _next_midnight(moment: datetime) -> datetime:
    return (moment + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)


def _slot_label(moment: datetime) -> str:
    clock = moment.strftime("%I:%M %p").lstrip("0")
    return f"{moment.strftime('%a %b')} {moment.day} · {clock}"


def generate_slots_from_working_hours(
    settings: SchedulingSettings,
    count: int = 5,
    now: Optional[datetime] = None,
) -> list[BookingSlot]:
    """Candidate slots on the slot-duration grid inside enabled working ranges."""
    zone = _zone(settings.timezone)
    now = now.astimezone(zone) if now else datetime.now(zone)
    duration = settings.slot_duration_minutes or 30
    max_date = now + timedelta(days=settings.max_days_ahead)
    days = {day.day: day for day in settings.working_hours}

    cursor = now + timedelta(hours=settings.minimum_notice_hours)
    rounded = math.ceil((cursor.minute + (1 if cursor.second or cursor.microsecond else 0)) / duration) * duration
    cursor = cursor.replace(minute=0, second=0, microsecond=0) + timedelta(minutes=rounded)

    slots: list[BookingSlot] = []
    steps = 0
    while len(slots) < count and cursor < max_date and steps < MAX_SLOT_SCAN_STEPS:
        steps += 1
        day = days.get(WEEKDAYS[cursor.weekday()])
        if not day or not day.enabled or not day.ranges:
            cursor = _next_midnight(cursor)
            continue

        clock = cursor.strftime("%H:%M")
        if any(r.start <= clock < r.end for r in day.ranges):
            end = cursor + timedelta(minutes=duration)
            slots.append(
                BookingSlot(
                    id=f"slot_{len(slots) + 1}",
                    start=cursor.isoformat(),
                    end=end.isoformat(),
                    label=_slot_label(cursor),
                    timezone=settings.timezone,
                )
            )
            cursor = end
        else:
            later_starts = sorted(r.start for r in day.ranges if r.start > clock)
            if later_starts:
                hour, minute = (int(part) for part in later_starts[0].split(":"))
                cursor = cursor.replace(hour=hour, minute=minute, second=0, microsecond=0)
                continue
            cursor = _next_midnight(cursor)
            continue

        if not any(cursor.strftime("%H:%M") < r.end for r in day.ranges):
            cursor = _next_midnight(cursor)

    return slots


class SchedulingSettingsProvider:
    """Scheduling settings fetched through the API and cached for a short while."""

    def __init__(
        self,
        api,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api = api
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else app_settings.scheduling_settings_cache_seconds
        self._clock = clock
        self._cached: Optional[SchedulingSettings] = None
        self._fetched_at = 0.0

    async def get(self) -> SchedulingSettings:
        if self._cached is not None and self._clock() - self._fetched_at < self.ttl_seconds:
            return self._cached
        try:
            raw = await self.api.get_scheduling_settings()
            self._cached = normalize_scheduling_settings(raw)
            self._fetched_at = self._clock()
        except (ApiError, ValueError) as e:
            logger.warning(f"Scheduling settings unavailable: {e}")
            if self._cached is None:
                self._cached = normalize_scheduling_settings(None)
        return self._cached


class StaticSettingsProvider:
    def __init__(self, scheduling: Optional[SchedulingSettings] = None):
        self.scheduling = scheduling or SchedulingSettings()

    async def get(self) -> SchedulingSettings:
        return self.scheduling
