"""Integration tests: the four registration steps through the public boundary."""

from datetime import timedelta

from slotbook.delivery.base import MessageTemplate
from slotbook.schemas.submission_schema import ApplicationStatus, NotificationKind

from tests.conftest import (
    ADMIN_KEY,
    PHONE,
    SATURDAY,
    THURSDAY_7PM,
    iso,
    register_through_step2,
    slot_time,
    verify_phone,
)

SATURDAY_SLOT = slot_time(SATURDAY)  # exactly two days after THURSDAY_7PM


class TestEndToEnd:
    def test_asha_registers_and_completes_survey(self, app, gateway, store):
        step1 = app.save_step1("+91 98765 43210", "Asha", "Engineer")
        assert step1.success
        assert step1.data["current_step"] == 1

        assert app.send_otp(PHONE, "Asha", "Engineer").success
        assert app.verify_otp(PHONE, gateway.last_code()).success

        step2 = app.save_step2(PHONE)
        assert step2.success
        assert step2.data["current_step"] == 2
        assert step2.data["application_status"] == "in_progress"

        assert SATURDAY_SLOT - THURSDAY_7PM == timedelta(days=2)
        step3 = app.save_step3(PHONE, "SATURDAY_7PM", iso(SATURDAY_SLOT))
        assert step3.success, step3.message
        assert step3.data["application_status"] == "registered"
        assert step3.data["is_registered"] is True
        assert step3.data["confirmation"]["status"] == "sent"
        assert all(o["status"] == "not_applicable" for o in step3.data["notifications"].values())

        doc = store.get(PHONE)
        for kind in NotificationKind:
            assert doc.flag(kind).sent is False
        assert gateway.calls(MessageTemplate.SLOT_CONFIRMATION) == 1
        for template in (MessageTemplate.REMINDER_4H, MessageTemplate.MEET_LINK_1H,
                         MessageTemplate.REMINDER_30M):
            assert gateway.calls(template) == 0

        step4 = app.save_step4(PHONE, 4, "Asha@Example.com")
        assert step4.success
        assert step4.data["application_status"] == "completed"

        doc = store.get(PHONE)
        assert doc.current_step == 4
        assert doc.email == "asha@example.com"
        assert doc.interest_level == 4
        assert doc.step1_data.full_name == "Asha"
        assert doc.step2_data.otp_verified
        assert doc.step3_data.selected_slot == "SATURDAY_7PM"
        assert doc.survey_data is not None

    def test_confirmation_variables(self, app, gateway):
        register_through_step2(app, gateway)
        app.save_step3(PHONE, "SATURDAY_7PM", iso(SATURDAY_SLOT))
        [recipient] = gateway.sent(MessageTemplate.SLOT_CONFIRMATION)
        assert recipient.phone == PHONE
        assert recipient.variables == {
            "name": "Asha", "date": "Saturday, 24th Oct", "time": "7:00 PM",
        }


class TestStep1:
    def test_normalizes_phone(self, app, store):
        app.save_step1("+91-98765-43210", "Asha", "Engineer")
        assert store.get(PHONE) is not None

    def test_short_phone_rejected(self, app):
        result = app.save_step1("12345", "Asha", "Engineer")
        assert not result.success
        assert result.error == "validation"

    def test_short_name_rejected(self, app):
        result = app.save_step1(PHONE, "A", "Engineer")
        assert result.error == "validation"
        assert "full_name" in result.message

    def test_missing_occupation_rejected(self, app):
        result = app.save_step1(PHONE, "Asha", None)
        assert result.error == "validation"

    def test_resubmission_updates_identity(self, app, store):
        app.save_step1(PHONE, "Asha", "Engineer")
        app.save_step1(PHONE, "Asha Rao", "Architect")
        doc = store.get(PHONE)
        assert doc.full_name == "Asha Rao"
        assert doc.occupation == "Architect"
        assert doc.current_step == 1

    def test_resubmission_after_booking_keeps_progress(self, app, gateway, store):
        register_through_step2(app, gateway)
        app.save_step3(PHONE, "SATURDAY_7PM", iso(SATURDAY_SLOT))
        result = app.save_step1(PHONE, "Asha Rao", "Architect")
        assert result.success
        doc = store.get(PHONE)
        assert doc.full_name == "Asha Rao"
        assert doc.current_step == 3
        assert doc.application_status == ApplicationStatus.REGISTERED
        assert doc.selected_slot == "SATURDAY_7PM"


class TestStep2:
    def test_requires_verification(self, app):
        app.save_step1(PHONE, "Asha", "Engineer")
        result = app.save_step2(PHONE)
        assert result.error == "unauthorized"

    def test_requires_step1(self, app, gateway):
        verify_phone(app, gateway)
        result = app.save_step2(PHONE)
        assert result.error == "not_found"

    def test_verification_expires(self, app, gateway, clock):
        app.save_step1(PHONE, "Asha", "Engineer")
        verify_phone(app, gateway)
        clock.advance(minutes=16)
        assert app.save_step2(PHONE).error == "unauthorized"


class TestStep3:
    def test_requires_verification(self, app):
        app.save_step1(PHONE, "Asha", "Engineer")
        result = app.save_step3(PHONE, "SATURDAY_7PM", iso(SATURDAY_SLOT))
        assert result.error == "unauthorized"

    def test_requires_step1(self, app, gateway):
        verify_phone(app, gateway)
        result = app.save_step3(PHONE, "SATURDAY_7PM", iso(SATURDAY_SLOT))
        assert result.error == "not_found"

    def test_invalid_slot_id(self, app, gateway):
        register_through_step2(app, gateway)
        result = app.save_step3(PHONE, "SATURDAY_9PM", iso(SATURDAY_SLOT))
        assert result.error == "validation"

    def test_date_must_match_slot(self, app, gateway):
        register_through_step2(app, gateway)
        result = app.save_step3(PHONE, "FRIDAY_7PM", iso(SATURDAY_SLOT))
        assert result.error == "validation"

    def test_unparseable_date(self, app, gateway):
        register_through_step2(app, gateway)
        result = app.save_step3(PHONE, "SATURDAY_7PM", "next saturday")
        assert result.error == "validation"

    def test_slot_in_the_past(self, app, gateway):
        register_through_step2(app, gateway)
        result = app.save_step3(PHONE, "THURSDAY_7PM", iso(THURSDAY_7PM))
        assert result.error == "validation"

    def test_disabled_slot_is_conflict(self, app, gateway):
        register_through_step2(app, gateway)
        assert app.set_slot_enabled(ADMIN_KEY, "SATURDAY_7PM", False).success
        result = app.save_step3(PHONE, "SATURDAY_7PM", iso(SATURDAY_SLOT))
        assert result.error == "conflict"
        assert "no longer available" in result.message

    def test_override_closed_date_is_conflict(self, app, gateway):
        register_through_step2(app, gateway)
        app.set_date_override(ADMIN_KEY, SATURDAY.isoformat(), "SATURDAY_7PM", False)
        result = app.save_step3(PHONE, "SATURDAY_7PM", iso(SATURDAY_SLOT))
        assert result.error == "conflict"

    def test_already_registered(self, app, gateway, clock):
        register_through_step2(app, gateway)
        assert app.save_step3(PHONE, "SATURDAY_7PM", iso(SATURDAY_SLOT)).success
        clock.advance(seconds=61)
        verify_phone(app, gateway)
        result = app.save_step3(PHONE, "SATURDAY_7PM", iso(SATURDAY_SLOT))
        assert result.error == "conflict"
        assert "already registered" in result.message

    def test_booking_consumes_verification(self, app, gateway):
        register_through_step2(app, gateway)
        app.save_step3(PHONE, "SATURDAY_7PM", iso(SATURDAY_SLOT))
        assert not app.otp.is_verified(PHONE)

    def test_sms_failure_does_not_roll_back(self, app, gateway, store):
        register_through_step2(app, gateway)
        gateway.fail_templates = True
        result = app.save_step3(PHONE, "SATURDAY_7PM", iso(SATURDAY_SLOT))
        assert result.success
        assert result.data["confirmation"]["status"] == "failed"
        assert store.get(PHONE).is_registered

    def test_gateway_exception_does_not_roll_back(self, app, gateway, store):
        register_through_step2(app, gateway)

        def explode(template, recipients):
            raise RuntimeError("socket closed")

        gateway.send_template = explode
        result = app.save_step3(PHONE, "SATURDAY_7PM", iso(SATURDAY_SLOT))
        assert result.success
        assert result.data["confirmation"]["status"] == "failed"
        assert store.get(PHONE).is_registered


class TestStep4:
    def test_missing_submission(self, app):
        result = app.save_step4(PHONE, 3, "asha@example.com")
        assert result.error == "not_found"

    def test_not_registered(self, app, gateway):
        register_through_step2(app, gateway)
        result = app.save_step4(PHONE, 3, "asha@example.com")
        assert result.error == "unauthorized"

    def test_interest_level_range(self, app, gateway):
        register_through_step2(app, gateway)
        app.save_step3(PHONE, "SATURDAY_7PM", iso(SATURDAY_SLOT))
        for bad in (0, 6, "high", 2.5, None):
            assert app.save_step4(PHONE, bad, "asha@example.com").error == "validation"
        assert app.save_step4(PHONE, "5", "asha@example.com").success

    def test_email_checked(self, app, gateway):
        register_through_step2(app, gateway)
        app.save_step3(PHONE, "SATURDAY_7PM", iso(SATURDAY_SLOT))
        assert app.save_step4(PHONE, 3, "not-an-email").error == "validation"


class TestRegistrationStatus:
    def test_unknown_phone(self, app):
        result = app.registration_status(PHONE)
        assert result.success
        assert result.data["is_registered"] is False
        assert result.data["survey_completed"] is False

    def test_registered_phone(self, app, gateway):
        register_through_step2(app, gateway)
        app.save_step3(PHONE, "SATURDAY_7PM", iso(SATURDAY_SLOT))
        result = app.registration_status(PHONE)
        assert result.data["is_registered"] is True
        assert result.data["selected_slot"] == "SATURDAY_7PM"
        assert result.data["application_status"] == "registered"


class TestOtpBoundary:
    def test_cooldown_reports_retry_after(self, app, clock):
        assert app.send_otp(PHONE, "Asha", "Engineer").success
        clock.advance(seconds=15)
        result = app.send_otp(PHONE, "Asha", "Engineer")
        assert result.error == "rate_limited"
        assert result.retry_after == 45

    def test_wrong_code_reports_attempts_left(self, app, gateway):
        app.send_otp(PHONE, "Asha", "Engineer")
        wrong = "111111" if gateway.last_code() != "111111" else "222222"
        result = app.verify_otp(PHONE, wrong)
        assert result.error == "otp_invalid"
        assert result.attempts_left == 2

    def test_non_numeric_code(self, app):
        assert app.verify_otp(PHONE, "abc").error == "validation"

    def test_gateway_failure_is_upstream(self, app, gateway):
        gateway.fail_otp = True
        result = app.send_otp(PHONE, "Asha", "Engineer")
        assert result.error == "upstream"

    def test_unexpected_error_is_generic(self, app, gateway):
        def explode(phone, code):
            raise RuntimeError("boom")

        gateway.send_otp = explode
        result = app.send_otp(PHONE, "Asha", "Engineer")
        assert not result.success
        assert result.error == "upstream"
        assert result.message == "Something went wrong."
