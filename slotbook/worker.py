"""
arq background worker for the reminder sweep.

The sweep runs as an arq cron job every SWEEP_INTERVAL_MINUTES. The app,
with its database-backed store and MSG91 gateway, is built once per worker
in ``startup``. Several workers may run against one database: flag claims
in the store keep every reminder to a single send.

Usage:
    arq slotbook.worker.WorkerSettings
    python main.py worker
"""

import asyncio
import logging
from urllib.parse import urlparse

from arq.connections import RedisSettings
from arq.cron import cron

from slotbook.app import build_live_app
from slotbook.config import settings

logger = logging.getLogger(__name__)


def get_redis_settings(redis_url: str) -> RedisSettings:
    """Parse ``redis[s]://[user:password@]host:port[/db]`` into arq settings."""
    parsed = urlparse(redis_url)
    database = parsed.path.lstrip("/")
    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        password=parsed.password,
        database=int(database) if database.isdigit() else 0,
        ssl=parsed.scheme == "rediss",
        conn_timeout=15,
        conn_retry_delay=1,
    )


def sweep_minutes(interval_minutes: int) -> set[int]:
    """Minutes of the hour on which the sweep fires."""
    return set(range(0, 60, interval_minutes))


async def startup(ctx) -> None:
    ctx["app"] = build_live_app(settings)
    logger.info("Worker started; sweeping every %d min", settings.notifications.sweep_interval_minutes)


async def shutdown(ctx) -> None:
    app = ctx.get("app")
    if app is not None:
        app.close()
    logger.info("Worker stopped")


async def sweep_reminders_task(ctx) -> dict:
    """Cron job: one notification sweep, run off the event loop."""
    app = ctx["app"]
    stats = await asyncio.to_thread(app.scheduler.sweep)
    summary = {kind.value: s.model_dump() for kind, s in stats.items()}
    logger.info("Reminder sweep (job %s): %s", ctx.get("job_id", "unknown"), summary)
    return summary


class WorkerSettings:
    """arq worker settings."""

    functions = [sweep_reminders_task]
    cron_jobs = [
        cron(
            sweep_reminders_task,
            minute=sweep_minutes(settings.notifications.sweep_interval_minutes),
            run_at_startup=True,
        ),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = get_redis_settings(settings.worker.redis_url)

    # One sweep at a time per worker; claims cover the multi-worker case.
    max_jobs = 1
    job_timeout = settings.worker.job_timeout_seconds
    keep_result = 3600
