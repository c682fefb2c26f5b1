"""
Offline console demo: runs the registration flow without any credentials.

Uses the real OTP engine, slot resolver, registration service and
notification scheduler over the in-memory store, with a console gateway
that prints messages instead of sending SMS and a clock the script can
move forward. No network calls.

Usage:
    python console_demo.py
    python console_demo.py --scenario lastminute
    python console_demo.py --scenario ratelimit
"""

import argparse
from datetime import datetime, timedelta, timezone

from slotbook.app import build_app
from slotbook.clock import civil_instant, to_civil
from slotbook.config import AppConfig, NotificationConfig, OtpConfig
from slotbook.delivery.console import ConsoleGateway
from slotbook.schemas.result_schema import OperationResult

BLUE = "\033[94m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
DIM = "\033[2m"
RESET = "\033[0m"
BOLD = "\033[1m"

DEMO_PHONE = "+91 98765 43210"
DEMO_SECRET = "console-demo-secret"


class DemoClock:
    """Settable clock so the demo can jump to reminder thresholds."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta

    def set(self, instant: datetime) -> None:
        self.now = instant


class ConsoleSession:
    """Plays scripted registrations against a fully wired app."""

    SCENARIOS = ("booking", "lastminute", "ratelimit")

    def __init__(self, start: datetime = datetime(2026, 10, 22, 6, 30, tzinfo=timezone.utc)) -> None:
        self.clock = DemoClock(start)
        self.gateway = ConsoleGateway()
        config = AppConfig(
            otp=OtpConfig(secret=DEMO_SECRET),
            notifications=NotificationConfig(
                cron_secret=DEMO_SECRET, meeting_link="https://meet.example.com/demo",
            ),
        )
        self.app = build_app(config, gateway=self.gateway, clock=self.clock)

    def say(self, text: str) -> None:
        print(f"{BLUE}[Registrant]{RESET} {text}")

    def system_log(self, text: str) -> None:
        print(f"{DIM}  >> {text}{RESET}")

    def show(self, label: str, result: OperationResult) -> None:
        if result.success:
            print(f"{GREEN}{BOLD}[{label}]{RESET} {GREEN}{result.message or 'ok'}{RESET}")
        else:
            extra = f" (retry in {result.retry_after}s)" if result.retry_after else ""
            print(f"{RED}{BOLD}[{label}]{RESET} {RED}{result.error}: {result.message}{extra}{RESET}")

    def show_outbox(self) -> None:
        for template, phone, variables in self.gateway.outbox:
            self.system_log(f"SMS {template} -> ******{phone[-4:]} {variables}")
        self.gateway.outbox.clear()

    def header(self, title: str) -> None:
        print()
        print(f"{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  SLOTBOOK - Scenario: {title}{RESET}")
        print(f"{BOLD}  Clock: {to_civil(self.clock()).strftime('%A %d %b %H:%M')} IST{RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")
        print()

    def run_scenario(self, scenario: str) -> None:
        handler = getattr(self, f"_scenario_{scenario}", None)
        if handler is None:
            print(f"{RED}Unknown scenario: {scenario}{RESET}")
            return
        self.header(scenario)
        handler()
        print(f"\n{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  Scenario '{scenario}' complete.{RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")

    def _verify(self) -> None:
        self.say("Requests an OTP")
        self.show("send_otp", self.app.send_otp(DEMO_PHONE, "Asha", "Engineer"))
        code = self.gateway.last_codes.get("9876543210", "")
        self.say("Enters the code from the SMS")
        self.show("verify_otp", self.app.verify_otp(DEMO_PHONE, code))

    # ------------------------------------------------------------------ #
    # Scenarios
    # ------------------------------------------------------------------ #

    def _scenario_booking(self) -> None:
        """Full flow, then sweeps at each reminder threshold."""
        self.say("Fills in name and occupation")
        self.show("step1", self.app.save_step1(DEMO_PHONE, "Asha", "Engineer"))
        self._verify()
        self.show("step2", self.app.save_step2(DEMO_PHONE))

        slots = self.app.get_slots_now()
        for slot in slots.data["slots"]:
            self.system_log(f"Offered now: {slot['slot_id']} ({slot['label']})")

        saturday = to_civil(self.clock()).date() + timedelta(days=2)
        listing = self.app.get_slots_for_date(saturday.isoformat())
        chosen = listing.data["slots"][0]
        self.say(f"Picks {chosen['label']}")
        booked = self.app.save_step3(DEMO_PHONE, chosen["slot_id"], chosen["iso_timestamp"])
        self.show("step3", booked)
        self.system_log(f"Status: {booked.data.get('application_status')}")
        self.show_outbox()

        self.say("Completes the survey")
        self.show("step4", self.app.save_step4(DEMO_PHONE, 5, "asha@example.com"))

        slot_start = civil_instant(saturday, 19, 0)
        for hours_before in (3.9, 0.9, 0.4):
            self.clock.set(slot_start - timedelta(hours=hours_before))
            swept = self.app.run_sweep(DEMO_SECRET)
            sent = {k: v["sent"] for k, v in swept.data.items()}
            self.system_log(f"Sweep at T-{hours_before}h: {sent}")
            self.show_outbox()

    def _scenario_lastminute(self) -> None:
        """Booking 24 minutes before the slot sends every reminder at once."""
        saturday = to_civil(self.clock()).date() + timedelta(days=2)
        self.clock.set(civil_instant(saturday, 18, 36))
        self.show("step1", self.app.save_step1(DEMO_PHONE, "Asha", "Engineer"))
        self._verify()
        self.show("step2", self.app.save_step2(DEMO_PHONE))

        booked = self.app.save_step3(
            DEMO_PHONE, "SATURDAY_7PM", civil_instant(saturday, 19, 0).isoformat(),
        )
        self.show("step3", booked)
        for kind, outcome in booked.data.get("notifications", {}).items():
            self.system_log(f"{kind}: {outcome['status']}")
        self.show_outbox()

    def _scenario_ratelimit(self) -> None:
        """Cooldown, window limit and attempt limit."""
        self.show("send_otp", self.app.send_otp(DEMO_PHONE, "Asha", "Engineer"))
        self.say("Asks again straight away")
        self.show("send_otp", self.app.send_otp(DEMO_PHONE, "Asha", "Engineer"))

        for attempt in range(3):
            self.say(f"Wrong code, attempt {attempt + 1}")
            self.show("verify_otp", self.app.verify_otp(DEMO_PHONE, "000000"))

        for _ in range(3):
            self.clock.advance(timedelta(seconds=61))
            self.show("send_otp", self.app.send_otp(DEMO_PHONE, "Asha", "Engineer"))


def main() -> None:
    parser = argparse.ArgumentParser(description="Offline console demo")
    parser.add_argument(
        "--scenario",
        choices=ConsoleSession.SCENARIOS,
        default="booking",
        help="Scripted scenario to play",
    )
    args = parser.parse_args()
    ConsoleSession().run_scenario(args.scenario)


if __name__ == "__main__":
    main()
