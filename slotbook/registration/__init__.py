from slotbook.registration.service import BookingOutcome, RegistrationService
from slotbook.registration.state_machine import (
    InvalidTransitionError,
    RegistrationStateMachine,
    RegistrationStep,
    RegistrationTrigger,
)

__all__ = [
    "BookingOutcome",
    "InvalidTransitionError",
    "RegistrationService",
    "RegistrationStateMachine",
    "RegistrationStep",
    "RegistrationTrigger",
]
