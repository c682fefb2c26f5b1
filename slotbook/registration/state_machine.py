"""
Finite state machine for the four-step registration flow.

Every step change goes through an explicit transition table, so a
submission can only move forward (or stay where it is on an idempotent
resubmission). Status is derived from the step and therefore never
regresses either.

Usage:
    sm = RegistrationStateMachine(RegistrationStep.IDENTITY)
    sm.transition(RegistrationTrigger.OTP_CONFIRMED)
    assert sm.current_step == RegistrationStep.OTP_VERIFIED
"""

import logging
from dataclasses import dataclass
from enum import Enum, IntEnum

from slotbook.errors import ConflictError
from slotbook.schemas.submission_schema import ApplicationStatus

logger = logging.getLogger(__name__)


class RegistrationStep(IntEnum):
    """Stored as ``current_step`` on the submission."""
    IDENTITY = 1
    OTP_VERIFIED = 2
    SLOT_BOOKED = 3
    SURVEY_DONE = 4


class RegistrationTrigger(str, Enum):
    """Events that cause step transitions."""
    IDENTITY_SAVED = "identity_saved"
    OTP_CONFIRMED = "otp_confirmed"
    SLOT_BOOKED = "slot_booked"
    SURVEY_SUBMITTED = "survey_submitted"


STEP_STATUS: dict[RegistrationStep, ApplicationStatus] = {
    RegistrationStep.IDENTITY: ApplicationStatus.IN_PROGRESS,
    RegistrationStep.OTP_VERIFIED: ApplicationStatus.IN_PROGRESS,
    RegistrationStep.SLOT_BOOKED: ApplicationStatus.REGISTERED,
    RegistrationStep.SURVEY_DONE: ApplicationStatus.COMPLETED,
}


@dataclass(frozen=True)
class Transition:
    """A single valid step transition."""
    from_step: RegistrationStep
    to_step: RegistrationStep
    trigger: RegistrationTrigger


class InvalidTransitionError(ConflictError):
    """Raised when a trigger is not valid from the current step."""


class RegistrationStateMachine:
    """
    Deterministic step controller for one submission.

    Identity resubmission is a self-loop on every step: it refreshes the
    identity fields without touching progress. Booking is allowed only
    once, so a registered submission cannot be booked again.
    """

    TRANSITIONS: list[Transition] = [
        # --- Identity (idempotent at every step) ---
        Transition(RegistrationStep.IDENTITY, RegistrationStep.IDENTITY,
                   RegistrationTrigger.IDENTITY_SAVED),
        Transition(RegistrationStep.OTP_VERIFIED, RegistrationStep.OTP_VERIFIED,
                   RegistrationTrigger.IDENTITY_SAVED),
        Transition(RegistrationStep.SLOT_BOOKED, RegistrationStep.SLOT_BOOKED,
                   RegistrationTrigger.IDENTITY_SAVED),
        Transition(RegistrationStep.SURVEY_DONE, RegistrationStep.SURVEY_DONE,
                   RegistrationTrigger.IDENTITY_SAVED),

        # --- OTP confirmation ---
        Transition(RegistrationStep.IDENTITY, RegistrationStep.OTP_VERIFIED,
                   RegistrationTrigger.OTP_CONFIRMED),
        Transition(RegistrationStep.OTP_VERIFIED, RegistrationStep.OTP_VERIFIED,
                   RegistrationTrigger.OTP_CONFIRMED),
        Transition(RegistrationStep.SLOT_BOOKED, RegistrationStep.SLOT_BOOKED,
                   RegistrationTrigger.OTP_CONFIRMED),
        Transition(RegistrationStep.SURVEY_DONE, RegistrationStep.SURVEY_DONE,
                   RegistrationTrigger.OTP_CONFIRMED),

        # --- Booking (verification is re-checked by the caller) ---
        Transition(RegistrationStep.IDENTITY, RegistrationStep.SLOT_BOOKED,
                   RegistrationTrigger.SLOT_BOOKED),
        Transition(RegistrationStep.OTP_VERIFIED, RegistrationStep.SLOT_BOOKED,
                   RegistrationTrigger.SLOT_BOOKED),

        # --- Survey ---
        Transition(RegistrationStep.SLOT_BOOKED, RegistrationStep.SURVEY_DONE,
                   RegistrationTrigger.SURVEY_SUBMITTED),
        Transition(RegistrationStep.SURVEY_DONE, RegistrationStep.SURVEY_DONE,
                   RegistrationTrigger.SURVEY_SUBMITTED),
    ]

    def __init__(self, current_step: RegistrationStep = RegistrationStep.IDENTITY) -> None:
        self._current_step = RegistrationStep(current_step)
        self._trace: list[RegistrationStep] = [self._current_step]

    @property
    def current_step(self) -> RegistrationStep:
        return self._current_step

    @property
    def status(self) -> ApplicationStatus:
        return STEP_STATUS[self._current_step]

    def transition(self, trigger: RegistrationTrigger) -> RegistrationStep:
        """
        Execute a step transition.

        Returns:
            The new step.

        Raises:
            InvalidTransitionError: If no valid transition exists.
        """
        for t in self.TRANSITIONS:
            if t.from_step == self._current_step and t.trigger == trigger:
                old_step = self._current_step
                self._current_step = t.to_step
                self._trace.append(self._current_step)
                logger.debug(
                    "Step transition: %d -> %d (trigger: %s)",
                    old_step, self._current_step, trigger.value,
                )
                return self._current_step

        valid = [t.value for t in self.get_valid_triggers()]
        raise InvalidTransitionError(
            f"Cannot apply '{trigger.value}' at step {int(self._current_step)}. "
            f"Valid triggers: {valid}"
        )

    def can_transition(self, trigger: RegistrationTrigger) -> bool:
        return trigger in self.get_valid_triggers()

    def get_valid_triggers(self) -> list[RegistrationTrigger]:
        """Return all triggers valid from the current step."""
        return [t.trigger for t in self.TRANSITIONS if t.from_step == self._current_step]

    def get_step_trace(self) -> list[int]:
        """Ordered list of steps visited by this machine."""
        return [int(step) for step in self._trace]
