"""Deterministic booking-intent detection.

The augmenter only depends on the BookingIntentClassifier protocol, so a
model-backed classifier can replace the keyword one without other changes.
"""

import re
from enum import Enum
from typing import Protocol


class BookingSignal(str, Enum):
    BOOKING_INTENT = "booking_intent"
    DECLINE = "decline"
    SHOW_SLOTS = "show_slots"
    PROPOSE_TIME = "propose_time"
    ACCEPT = "accept"


BOOKING_PATTERNS = [
    re.compile(r"\b(book|booking|schedule|appointment)\b", re.IGNORECASE),
    re.compile(r"\b(call me|can we talk|meeting)\b", re.IGNORECASE),
    re.compile(r"\b(tomorrow|next week|this week|at \d{1,2}(:\d{2})?\s*(am|pm)?)\b", re.IGNORECASE),
    re.compile(r"\b(can i schedule|set up a (call|meeting|visit))\b", re.IGNORECASE),
    re.compile(r"\b(available\s*(time|slot)s?)\b", re.IGNORECASE),
    re.compile(r"\b(14:\d{2}|15:\d{2}|[0-9]{1,2}\s*(o'?clock|am|pm))\b", re.IGNORECASE),
]

SIGNAL_PATTERNS = {
    BookingSignal.DECLINE: re.compile(r"\b(not now|no thanks|later|maybe later|decline|skip)\b", re.IGNORECASE),
    BookingSignal.SHOW_SLOTS: re.compile(r"\b(show.*slot|available.*time|show.*available)", re.IGNORECASE),
    BookingSignal.PROPOSE_TIME: re.compile(r"\b(propose|custom|my own|prefer|another time)\b", re.IGNORECASE),
    BookingSignal.ACCEPT: re.compile(r"\b(yes|confirm|book|sure|go ahead|sounds good|let's do it)\b", re.IGNORECASE),
}

PHONE_PATTERN = re.compile(r"[\d+\-()]{6,}")


class BookingIntentClassifier(Protocol):
    def classify(self, text: str) -> set[BookingSignal]:
        ...


class KeywordBookingClassifier:
    """Regex keyword matching, no LLM round-trip."""

    def classify(self, text: str) -> set[BookingSignal]:
        if not text:
            return set()
        signals = {signal for signal, pattern in SIGNAL_PATTERNS.items() if pattern.search(text)}
        if detect_booking_intent(text):
            signals.add(BookingSignal.BOOKING_INTENT)
        return signals


def detect_booking_intent(text: str) -> bool:
    if not text:
        return False
    return any(pattern.search(text) for pattern in BOOKING_PATTERNS)


def looks_like_phone(text: str) -> bool:
    return bool(PHONE_PATTERN.search(text or ""))


def looks_like_name(text: str) -> bool:
    return len((text or "").strip()) >= 2
