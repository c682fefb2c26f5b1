"""Tests for the registration step state machine."""

import pytest

from slotbook.errors import ConflictError
from slotbook.registration.state_machine import (
    InvalidTransitionError,
    RegistrationStateMachine,
    RegistrationStep,
    RegistrationTrigger,
)
from slotbook.schemas.submission_schema import ApplicationStatus


@pytest.fixture
def state_machine():
    return RegistrationStateMachine()


class TestInitialState:
    def test_starts_at_identity(self, state_machine):
        assert state_machine.current_step == RegistrationStep.IDENTITY

    def test_starts_in_progress(self, state_machine):
        assert state_machine.status == ApplicationStatus.IN_PROGRESS

    def test_trace_has_one_entry(self, state_machine):
        assert state_machine.get_step_trace() == [1]


class TestForwardPath:
    def test_full_path(self, state_machine):
        state_machine.transition(RegistrationTrigger.OTP_CONFIRMED)
        assert state_machine.current_step == RegistrationStep.OTP_VERIFIED
        state_machine.transition(RegistrationTrigger.SLOT_BOOKED)
        assert state_machine.status == ApplicationStatus.REGISTERED
        state_machine.transition(RegistrationTrigger.SURVEY_SUBMITTED)
        assert state_machine.status == ApplicationStatus.COMPLETED
        assert state_machine.get_step_trace() == [1, 2, 3, 4]

    def test_booking_straight_from_identity(self, state_machine):
        new = state_machine.transition(RegistrationTrigger.SLOT_BOOKED)
        assert new == RegistrationStep.SLOT_BOOKED


class TestNoRegression:
    @pytest.mark.parametrize("step", list(RegistrationStep))
    def test_identity_resubmission_keeps_step(self, step):
        sm = RegistrationStateMachine(step)
        assert sm.transition(RegistrationTrigger.IDENTITY_SAVED) == step

    @pytest.mark.parametrize("step", [RegistrationStep.SLOT_BOOKED, RegistrationStep.SURVEY_DONE])
    def test_otp_confirmation_after_booking_keeps_step(self, step):
        sm = RegistrationStateMachine(step)
        assert sm.transition(RegistrationTrigger.OTP_CONFIRMED) == step

    def test_resubmitted_survey_stays_completed(self):
        sm = RegistrationStateMachine(RegistrationStep.SURVEY_DONE)
        sm.transition(RegistrationTrigger.SURVEY_SUBMITTED)
        assert sm.status == ApplicationStatus.COMPLETED


class TestInvalidTransitions:
    @pytest.mark.parametrize("step", [RegistrationStep.SLOT_BOOKED, RegistrationStep.SURVEY_DONE])
    def test_cannot_book_twice(self, step):
        sm = RegistrationStateMachine(step)
        with pytest.raises(InvalidTransitionError):
            sm.transition(RegistrationTrigger.SLOT_BOOKED)

    @pytest.mark.parametrize("step", [RegistrationStep.IDENTITY, RegistrationStep.OTP_VERIFIED])
    def test_survey_requires_booking(self, step):
        sm = RegistrationStateMachine(step)
        with pytest.raises(InvalidTransitionError):
            sm.transition(RegistrationTrigger.SURVEY_SUBMITTED)

    def test_failed_transition_keeps_step(self, state_machine):
        with pytest.raises(InvalidTransitionError):
            state_machine.transition(RegistrationTrigger.SURVEY_SUBMITTED)
        assert state_machine.current_step == RegistrationStep.IDENTITY

    def test_error_lists_valid_triggers(self, state_machine):
        with pytest.raises(InvalidTransitionError, match="otp_confirmed"):
            state_machine.transition(RegistrationTrigger.SURVEY_SUBMITTED)

    def test_is_a_conflict(self):
        assert issubclass(InvalidTransitionError, ConflictError)


class TestValidTriggers:
    def test_identity_step(self, state_machine):
        assert set(state_machine.get_valid_triggers()) == {
            RegistrationTrigger.IDENTITY_SAVED,
            RegistrationTrigger.OTP_CONFIRMED,
            RegistrationTrigger.SLOT_BOOKED,
        }

    def test_can_transition(self):
        sm = RegistrationStateMachine(RegistrationStep.SLOT_BOOKED)
        assert sm.can_transition(RegistrationTrigger.SURVEY_SUBMITTED)
        assert not sm.can_transition(RegistrationTrigger.SLOT_BOOKED)

    def test_every_step_has_a_transition(self):
        for step in RegistrationStep:
            assert RegistrationStateMachine(step).get_valid_triggers()
