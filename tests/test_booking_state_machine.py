import pytest

from leaddesk.services.booking_state_machine import (
    BookingStage,
    InvalidTransitionError,
    can_transition,
    complete,
    decline,
    is_terminal,
    offer,
    present_slots,
    transition,
    transition_path,
)


class TestValidTransitions:
    def test_idle_to_offered(self):
        assert transition(BookingStage.IDLE, BookingStage.OFFERED) == BookingStage.OFFERED

    def test_offered_to_awaiting_slot_choice(self):
        result = transition(BookingStage.OFFERED, BookingStage.AWAITING_SLOT_CHOICE)
        assert result == BookingStage.AWAITING_SLOT_CHOICE

    def test_awaiting_slot_choice_to_completed(self):
        result = transition(BookingStage.AWAITING_SLOT_CHOICE, BookingStage.COMPLETED)
        assert result == BookingStage.COMPLETED

    def test_custom_time_to_completed(self):
        result = transition(BookingStage.AWAITING_CUSTOM_TIME, BookingStage.COMPLETED)
        assert result == BookingStage.COMPLETED

    @pytest.mark.parametrize(
        "stage",
        [
            BookingStage.IDLE,
            BookingStage.OFFERED,
            BookingStage.AWAITING_NAME,
            BookingStage.AWAITING_PHONE,
            BookingStage.AWAITING_SLOT_CHOICE,
            BookingStage.AWAITING_CUSTOM_TIME,
        ],
    )
    def test_any_non_terminal_can_decline(self, stage):
        assert decline(stage) == BookingStage.DECLINED


class TestInvalidTransitions:
    def test_idle_cannot_complete(self):
        with pytest.raises(InvalidTransitionError):
            transition(BookingStage.IDLE, BookingStage.COMPLETED)

    def test_declined_is_sticky(self):
        with pytest.raises(InvalidTransitionError):
            offer(BookingStage.DECLINED)

    def test_completed_is_sticky(self):
        with pytest.raises(InvalidTransitionError):
            offer(BookingStage.COMPLETED)

    def test_same_stage(self):
        with pytest.raises(InvalidTransitionError):
            transition(BookingStage.OFFERED, BookingStage.OFFERED)

    def test_error_names_both_stages(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            transition(BookingStage.COMPLETED, BookingStage.OFFERED)
        assert exc_info.value.from_stage == BookingStage.COMPLETED
        assert exc_info.value.to_stage == BookingStage.OFFERED
        assert "completed -> offered" in str(exc_info.value)


class TestHelperFunctions:
    def test_offer(self):
        assert offer(BookingStage.IDLE) == BookingStage.OFFERED

    def test_present_slots_from_offered(self):
        assert present_slots(BookingStage.OFFERED) == BookingStage.AWAITING_SLOT_CHOICE

    def test_present_slots_from_idle_fails(self):
        with pytest.raises(InvalidTransitionError):
            present_slots(BookingStage.IDLE)

    def test_complete_from_offered_fails(self):
        with pytest.raises(InvalidTransitionError):
            complete(BookingStage.OFFERED)

    def test_terminal_stages(self):
        assert is_terminal(BookingStage.DECLINED) is True
        assert is_terminal(BookingStage.COMPLETED) is True
        assert is_terminal(BookingStage.AWAITING_SLOT_CHOICE) is False


class TestTransitionPath:
    def test_idle_to_completed_goes_through_slot_choice(self):
        assert transition_path(BookingStage.IDLE, BookingStage.COMPLETED) == [
            BookingStage.OFFERED,
            BookingStage.AWAITING_SLOT_CHOICE,
            BookingStage.COMPLETED,
        ]

    def test_same_stage_is_empty(self):
        assert transition_path(BookingStage.OFFERED, BookingStage.OFFERED) == []

    def test_unreachable_from_terminal(self):
        assert transition_path(BookingStage.DECLINED, BookingStage.OFFERED) is None

    def test_no_way_back_to_idle(self):
        assert transition_path(BookingStage.OFFERED, BookingStage.IDLE) is None


class TestCanTransition:
    def test_valid_returns_true(self):
        assert can_transition(BookingStage.IDLE, BookingStage.OFFERED) is True

    def test_invalid_returns_false(self):
        assert can_transition(BookingStage.COMPLETED, BookingStage.DECLINED) is False
