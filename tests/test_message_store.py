import pytest

from leaddesk.schemas.booking import BookingMode, BookingPayload, QuickReply
from leaddesk.services.message_store import MessageStore


@pytest.fixture
def store():
    return MessageStore("lead-1")


class TestLoad:
    def test_replaces_everything(self, store):
        store.append_optimistic("stale")
        store.load(
            {
                "leadId": "lead-1",
                "conversationId": "conv-1",
                "messages": [{"role": "assistant", "content": "Hi", "quickReplies": [{"label": "A", "value": "a"}]}],
                "currentStep": 3,
                "parsedFields": {"service": "gutters"},
            }
        )

        assert len(store) == 1
        assert store.messages[0].quick_replies == [QuickReply(label="A", value="a")]
        assert store.conversation_id == "conv-1"
        assert store.current_step == 3
        assert store.parsed_fields == {"service": "gutters"}

    def test_missing_fields_default(self, store):
        data = store.load({"messages": None, "current_step": None, "parsed_fields": None})
        assert data.lead_id == "lead-1"
        assert store.messages == []
        assert store.current_step == 0
        assert store.parsed_fields == {}

    def test_null_content_becomes_empty(self, store):
        store.load({"messages": [{"role": "assistant", "content": None}]})
        assert store.messages[0].content == ""

    def test_legacy_booking_mode_normalized(self, store):
        store.load({"messages": [{"role": "assistant", "content": "x", "booking": {"mode": "offer"}}]})
        assert store.messages[0].booking.mode == BookingMode.OFFERED

    def test_booking_without_mode_ignored(self, store):
        store.load({"messages": [{"role": "assistant", "content": "x", "booking": {"slots": []}}]})
        assert store.messages[0].booking is None


class TestAppend:
    def test_optimistic_then_rollback(self, store):
        store.append_assistant("Hello")
        store.append_optimistic("Hi")
        assert store.messages[-1].is_user

        removed = store.rollback_last()

        assert removed.content == "Hi"
        assert [m.content for m in store.messages] == ["Hello"]

    def test_rollback_removes_given_message_not_tail(self, store):
        optimistic = store.append_optimistic("Hi")
        store.append_assistant("Reply that arrived meanwhile")

        removed = store.rollback_last(optimistic)

        assert removed is optimistic
        assert [m.content for m in store.messages] == ["Reply that arrived meanwhile"]

    def test_rollback_of_unknown_message_keeps_store(self, store):
        store.append_optimistic("Hi")
        stray = store.append_optimistic("Hi")
        store.rollback_last(stray)

        assert store.rollback_last(stray) is None
        assert len(store) == 1

    def test_rollback_on_empty(self, store):
        assert store.rollback_last() is None

    def test_messages_returns_copy(self, store):
        store.append_assistant("Hello")
        store.messages.clear()
        assert len(store) == 1


class TestBookingPatch:
    def test_patch_clears_quick_replies(self, store):
        store.append_assistant(
            "Pick one",
            quick_replies=[QuickReply(label="Yes", value="yes")],
            booking=BookingPayload(mode=BookingMode.OFFERED),
        )

        message = store.patch_booking_at(0, BookingPayload(mode=BookingMode.CONFIRMED))

        assert message.booking.mode == BookingMode.CONFIRMED
        assert message.quick_replies is None

    def test_patch_out_of_range(self, store):
        with pytest.raises(IndexError):
            store.patch_booking_at(0, BookingPayload(mode=BookingMode.CONFIRMED))
        with pytest.raises(IndexError):
            store.message_at(-1)

    def test_clear_quick_replies(self, store):
        store.append_assistant("a", quick_replies=[QuickReply(label="1", value="1")])
        store.append_assistant("b", quick_replies=[QuickReply(label="2", value="2")])
        store.append_assistant("c")

        assert store.clear_quick_replies() == 2
        assert all(m.quick_replies is None for m in store.messages)
