"""
Registration flow: identity, OTP confirmation, slot booking and survey.

Each step validates its own preconditions and raises a typed
``SlotbookError``; step/status changes go through the state machine. This
service owns the step, status and booking fields of a submission. The
notification flags belong to ``NotificationScheduler``.
"""

from dataclasses import dataclass, field
from typing import Optional

from slotbook.clock import Clock, utc_now
from slotbook.errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from slotbook.logging_context import get_request_logger
from slotbook.notifications.scheduler import NotificationScheduler
from slotbook.otp.engine import OtpEngine
from slotbook.registration.state_machine import (
    RegistrationStateMachine,
    RegistrationStep,
    RegistrationTrigger,
)
from slotbook.schemas.request_schema import Step1Request, Step3Request, Step4Request
from slotbook.schemas.result_schema import DispatchOutcome
from slotbook.schemas.submission_schema import (
    NotificationKind,
    RegistrationStatusView,
    Step1Data,
    Step2Data,
    Step3Data,
    Submission,
    SurveyData,
)
from slotbook.slots.catalog import parse_slot_id
from slotbook.slots.resolver import SlotResolver
from slotbook.storage.base import DuplicateKeyError, SubmissionRepository
from slotbook.sync.outbox import SyncOutbox
from slotbook.utils import mask_phone

logger = get_request_logger(__name__)

NOT_FOUND_MESSAGE = "Application not found. Please start from Step 1."
NOT_VERIFIED_MESSAGE = "Phone not verified. Please verify OTP first."


@dataclass
class BookingOutcome:
    """Result of step 3: the saved submission plus what was sent."""
    submission: Submission
    confirmation: DispatchOutcome
    notifications: dict[NotificationKind, DispatchOutcome] = field(default_factory=dict)


class RegistrationService:
    """Drives one submission through the four registration steps."""

    def __init__(
        self,
        submissions: SubmissionRepository,
        otp: OtpEngine,
        resolver: SlotResolver,
        scheduler: NotificationScheduler,
        outbox: Optional[SyncOutbox] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._submissions = submissions
        self._otp = otp
        self._resolver = resolver
        self._scheduler = scheduler
        self._outbox = outbox
        self._clock = clock

    def save_identity(self, request: Step1Request) -> Submission:
        """Step 1. Creates the submission, or refreshes identity without losing progress."""
        now = self._clock()
        step1 = Step1Data(
            full_name=request.full_name,
            whatsapp_number=request.phone,
            occupation=request.occupation,
            completed_at=now,
        )

        existing = self._submissions.get(request.phone)
        if existing is None:
            try:
                saved = self._submissions.insert(Submission(
                    phone=request.phone,
                    full_name=request.full_name,
                    occupation=request.occupation,
                    step1_data=step1,
                    created_at=now,
                    updated_at=now,
                ))
            except DuplicateKeyError:
                raise ConflictError("An application for this phone number already exists.") from None
            logger.info("Step 1 created submission for %s", mask_phone(request.phone))
        else:
            machine = RegistrationStateMachine(RegistrationStep(existing.current_step))
            machine.transition(RegistrationTrigger.IDENTITY_SAVED)
            saved = self._require(self._submissions.update(request.phone, {
                "full_name": request.full_name,
                "occupation": request.occupation,
                "step1_data": step1,
                "updated_at": now,
            }))
            logger.info(
                "Step 1 refreshed identity for %s (step %d kept)",
                mask_phone(request.phone), saved.current_step,
            )

        self._enqueue_sync(request.phone, "step1")
        return saved

    def confirm_otp(self, phone: str) -> Submission:
        """Step 2. Requires the phone to be inside its verified grace window."""
        if not self._otp.is_verified(phone):
            raise UnauthorizedError(NOT_VERIFIED_MESSAGE)
        existing = self._require(self._submissions.get(phone))

        machine = RegistrationStateMachine(RegistrationStep(existing.current_step))
        machine.transition(RegistrationTrigger.OTP_CONFIRMED)
        now = self._clock()
        saved = self._require(self._submissions.update(phone, {
            "step2_data": Step2Data(otp_verified=True, completed_at=now),
            "current_step": int(machine.current_step),
            "application_status": machine.status,
            "updated_at": now,
        }))
        logger.info("Step 2 saved for %s", mask_phone(phone))
        self._enqueue_sync(phone, "step2")
        return saved

    def book_slot(self, request: Step3Request) -> BookingOutcome:
        """
        Step 3. Books the slot and registers the submission.

        After the booking is stored, the confirmation SMS and any reminders
        already inside their window are sent. Delivery failures are
        reported in the outcome and never undo the booking.

        Raises:
            UnauthorizedError: phone not inside its verified grace window.
            ValidationError: slot date in the past or not matching the slot id.
            ConflictError: slot no longer open, or phone already registered.
            NotFoundError: no step 1 submission.
        """
        phone = request.phone
        if not self._otp.is_verified(phone):
            raise UnauthorizedError(NOT_VERIFIED_MESSAGE)

        definition = parse_slot_id(request.selected_slot)
        if definition is None or not definition.matches(request.slot_date):
            raise ValidationError("slot_date does not match the selected slot.")
        now = self._clock()
        if request.slot_date <= now:
            raise ValidationError("Selected slot has already started.")
        if not self._resolver.is_slot_open(request.selected_slot, request.slot_date):
            raise ConflictError("Selected slot is no longer available. Please choose another.")

        existing = self._require(self._submissions.get(phone))
        if existing.is_registered:
            raise ConflictError("This phone number is already registered for a demo.")

        machine = RegistrationStateMachine(RegistrationStep(existing.current_step))
        machine.transition(RegistrationTrigger.SLOT_BOOKED)
        saved = self._require(self._submissions.update(phone, {
            "step3_data": Step3Data(
                selected_slot=request.selected_slot,
                slot_date=request.slot_date,
                completed_at=now,
            ),
            "selected_slot": request.selected_slot,
            "slot_date": request.slot_date,
            "current_step": int(machine.current_step),
            "application_status": machine.status,
            "is_registered": True,
            "registered_at": now,
            "updated_at": now,
        }))
        logger.info("Step 3 booked %s for %s", request.selected_slot, mask_phone(phone))

        self._enqueue_sync(phone, "step3")
        self._otp.clear_verification(phone)

        confirmation = self._scheduler.send_confirmation(saved)
        notifications = self._scheduler.dispatch_at_booking(saved)
        return BookingOutcome(
            submission=self._submissions.get(phone) or saved,
            confirmation=confirmation,
            notifications=notifications,
        )

    def submit_survey(self, request: Step4Request) -> Submission:
        """Step 4. Only a registered submission can complete the survey."""
        existing = self._require(self._submissions.get(request.phone))
        if not existing.is_registered:
            raise UnauthorizedError("Please book a demo slot before completing the survey.")

        machine = RegistrationStateMachine(RegistrationStep(existing.current_step))
        machine.transition(RegistrationTrigger.SURVEY_SUBMITTED)
        now = self._clock()
        saved = self._require(self._submissions.update(request.phone, {
            "survey_data": SurveyData(
                interest_level=request.interest_level,
                email=request.email,
                completed_at=now,
            ),
            "interest_level": request.interest_level,
            "email": request.email,
            "current_step": int(machine.current_step),
            "application_status": machine.status,
            "updated_at": now,
        }))
        logger.info("Step 4 survey saved for %s", mask_phone(request.phone))
        self._enqueue_sync(request.phone, "step4")
        return saved

    def registration_status(self, phone: str) -> RegistrationStatusView:
        """Read-only summary; an unknown phone is simply not registered."""
        submission = self._submissions.get(phone)
        if submission is None:
            return RegistrationStatusView()
        return RegistrationStatusView(
            is_registered=submission.is_registered,
            registered_at=submission.registered_at,
            selected_slot=submission.selected_slot,
            slot_date=submission.slot_date,
            survey_completed=submission.survey_data is not None,
            application_status=submission.application_status,
            current_step=submission.current_step,
        )

    @staticmethod
    def _require(submission: Optional[Submission]) -> Submission:
        if submission is None:
            raise NotFoundError(NOT_FOUND_MESSAGE)
        return submission

    def _enqueue_sync(self, phone: str, reason: str) -> None:
        if self._outbox is not None:
            self._outbox.enqueue(phone, reason)
