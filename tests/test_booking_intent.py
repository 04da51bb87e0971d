import pytest

from leaddesk.services.booking_intent import (
    BookingSignal,
    KeywordBookingClassifier,
    detect_booking_intent,
    looks_like_name,
    looks_like_phone,
)


class TestDetectBookingIntent:
    @pytest.mark.parametrize(
        "text",
        [
            "Can I book a call?",
            "Let's schedule something",
            "could we set up a visit",
            "Any available slots?",
            "how about tomorrow",
            "3 pm works",
        ],
    )
    def test_detects(self, text):
        assert detect_booking_intent(text) is True

    @pytest.mark.parametrize("text", ["", "How much for gutter cleaning?", "The roof is 2000 sq ft"])
    def test_ignores(self, text):
        assert detect_booking_intent(text) is False


class TestKeywordBookingClassifier:
    def test_decline(self):
        assert BookingSignal.DECLINE in KeywordBookingClassifier().classify("No thanks, maybe later")

    def test_show_slots(self):
        assert BookingSignal.SHOW_SLOTS in KeywordBookingClassifier().classify("Show available slots")

    def test_propose_time(self):
        assert BookingSignal.PROPOSE_TIME in KeywordBookingClassifier().classify("I'd like to propose a time")

    def test_accept_also_carries_intent(self):
        signals = KeywordBookingClassifier().classify("Yes, book a call")
        assert {BookingSignal.ACCEPT, BookingSignal.BOOKING_INTENT} <= signals

    def test_empty_text(self):
        assert KeywordBookingClassifier().classify("") == set()


class TestFieldHeuristics:
    def test_phone(self):
        assert looks_like_phone("+1 (555) 123-4567") is True
        assert looks_like_phone("call me") is False

    def test_name(self):
        assert looks_like_name("Al") is True
        assert looks_like_name(" A ") is False
