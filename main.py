"""
slotbook entry point.

Runs the reminder sweep once (for an external cron), starts the arq worker
that sweeps on a schedule, or starts the offline console demo. The sweep
and worker modes need DATABASE_URL so they see the submissions written by
the registration service.

Usage:
    One sweep:          python main.py sweep
    Scheduled worker:   python main.py worker
    Console mode:       python main.py console
"""

import logging
import os
import sys

from slotbook.config import settings
from slotbook.errors import ConfigurationError

logger = logging.getLogger(__name__)


def _build_live_app():
    """Wire the app against MSG91 and the database; refuses to start without them."""
    from slotbook.app import build_live_app

    try:
        return build_live_app(settings)
    except ConfigurationError as exc:
        logger.error("Refusing to start: %s", exc.message)
        sys.exit(1)


def _run_sweep_once() -> None:
    app = _build_live_app()
    try:
        result = app.run_sweep(os.getenv("CRON_SECRET"))
    finally:
        app.close()
    if not result.success:
        logger.error("Sweep failed: %s", result.message)
        sys.exit(1)
    logger.info("Sweep result: %s", result.data)


def _run_worker() -> None:
    """Run the arq worker until SIGINT/SIGTERM; the sweep is its cron job."""
    from arq import run_worker

    from slotbook.worker import WorkerSettings

    run_worker(WorkerSettings)


def _run_console_mode() -> None:
    """Start the offline console demo (no credentials required)."""
    from console_demo import ConsoleSession

    ConsoleSession().run_scenario("booking")


if __name__ == "__main__":
    mode = sys.argv[1] if len(sys.argv) > 1 else ""
    if mode == "sweep":
        _run_sweep_once()
    elif mode == "worker":
        _run_worker()
    elif mode == "console":
        _run_console_mode()
    else:
        print(__doc__)
        sys.exit(2)
