"""
arq background worker.

    arq rental_booking.worker.WorkerSettings

Runs payment event processing (bounded retries, exponential backoff), slot
hold expiry, customer notifications, and two sweeps that recover work whose
original job was lost: events recorded but never enqueued, and holds whose
expiry timer never fired. Without Redis the API process runs the same job
functions and sweeps itself (see main.py).
"""

from datetime import timedelta
from typing import Any

from arq import Retry
from arq.cron import cron
from arq.worker import func

from rental_booking.core.config import get_settings
from rental_booking.core.logging import get_logger, setup_logging
from rental_booking.db.base import utcnow
from rental_booking.db.session import AsyncSessionLocal, engine
from rental_booking.services.hold_expiry_service import expire_hold, find_lapsed_holds
from rental_booking.services.notification_service import send_notification
from rental_booking.services.payment_event_service import (
    PROCESS_EVENT_JOB,
    find_unprocessed_events,
    process_event,
    process_job_id,
)
from rental_booking.services.strategy_factory import build_payment_provider
from rental_booking.services.task_queue_service import ArqTaskQueue, get_redis_settings

settings = get_settings()
logger = get_logger(__name__)


def retry_delay_seconds(job_try: int) -> int:
    return settings.WEBHOOK_RETRY_BASE_SECONDS * 2 ** (job_try - 1)


async def process_payment_event_task(ctx: dict[str, Any], provider_event_id: str) -> bool:
    job_try = ctx.get("job_try", 1)
    try:
        return await process_event(
            ctx["session_factory"],
            provider_event_id,
            ctx["payment_provider"],
            ctx["task_queue"],
        )
    except Exception as e:
        if job_try >= settings.WEBHOOK_MAX_TRIES:
            logger.error("payment_event_retries_exhausted", provider_event_id=provider_event_id, tries=job_try)
            raise
        delay = retry_delay_seconds(job_try)
        logger.warning("payment_event_retry_scheduled", provider_event_id=provider_event_id, job_try=job_try, delay=delay)
        raise Retry(defer=delay) from e


async def release_slot_hold_task(ctx: dict[str, Any], hold_id: str, booking_id: str, slot_id: str) -> str:
    logger.info("slot_hold_timer_fired", hold_id=hold_id, booking_id=booking_id, slot_id=slot_id)
    return await expire_hold(ctx["session_factory"], hold_id)


async def send_notification_task(ctx: dict[str, Any], notification_type: str, booking_id: str) -> bool:
    return await send_notification(ctx["session_factory"], notification_type, booking_id)


async def sweep_unprocessed_events(ctx: dict[str, Any]) -> int:
    cutoff = utcnow() - timedelta(minutes=settings.UNPROCESSED_EVENT_SWEEP_MINUTES)
    event_ids = await find_unprocessed_events(ctx["session_factory"], cutoff)
    queued = 0
    for provider_event_id in event_ids:
        if await ctx["task_queue"].enqueue(
            PROCESS_EVENT_JOB,
            {"provider_event_id": provider_event_id},
            job_id=process_job_id(provider_event_id),
        ):
            queued += 1
    if event_ids:
        logger.info("unprocessed_events_swept", found=len(event_ids), queued=queued)
    return queued


async def sweep_lapsed_holds(ctx: dict[str, Any]) -> int:
    hold_ids = await find_lapsed_holds(ctx["session_factory"])
    for hold_id in hold_ids:
        await expire_hold(ctx["session_factory"], hold_id)
    if hold_ids:
        logger.info("lapsed_holds_swept", count=len(hold_ids))
    return len(hold_ids)


SWEEPS = (sweep_unprocessed_events, sweep_lapsed_holds)


async def run_sweeps(ctx: dict[str, Any]) -> dict[str, int]:
    """Run every sweep once. Used where no arq cron scheduler is attached."""
    results = {}
    for sweep in SWEEPS:
        try:
            results[sweep.__name__] = await sweep(ctx)
        except Exception as e:
            logger.error("sweep_failed", sweep=sweep.__name__, error=str(e))
    return results


# Job name -> coroutine, for queues that run jobs in-process
WORKER_FUNCTIONS = {
    "process_payment_event_task": process_payment_event_task,
    "release_slot_hold_task": release_slot_hold_task,
    "send_notification_task": send_notification_task,
}


async def startup(ctx: dict[str, Any]) -> None:
    setup_logging()
    ctx["session_factory"] = AsyncSessionLocal
    ctx["payment_provider"] = build_payment_provider()
    ctx["task_queue"] = ArqTaskQueue(ctx["redis"])
    logger.info("worker_started", max_jobs=settings.WORKER_MAX_JOBS)


async def shutdown(ctx: dict[str, Any]) -> None:
    await engine.dispose()
    logger.info("worker_stopped")


def _every(minutes: int) -> set[int]:
    step = max(1, min(minutes, 60))
    return set(range(0, 60, step))


class WorkerSettings:
    """arq worker settings."""

    functions = [
        func(process_payment_event_task, max_tries=settings.WEBHOOK_MAX_TRIES),
        release_slot_hold_task,
        func(send_notification_task, max_tries=settings.NOTIFICATION_MAX_TRIES),
    ]
    cron_jobs = [
        cron(sweep_unprocessed_events, minute=_every(settings.UNPROCESSED_EVENT_SWEEP_MINUTES), run_at_startup=True),
        cron(sweep_lapsed_holds, minute=_every(5)),
    ]
    redis_settings = get_redis_settings()
    on_startup = startup
    on_shutdown = shutdown

    max_jobs = settings.WORKER_MAX_JOBS
    job_timeout = settings.WORKER_JOB_TIMEOUT
    keep_result = 3600
    max_tries = 5
