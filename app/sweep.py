"""
Scheduled booking completion.

Bookings still CONFIRMED after checkout are moved to COMPLETED (open add-on
services are completed with them) and then settled. Each booking is
processed independently and concurrently: one failing or timing out never
stops the others.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from datetime import datetime, timezone
from enum import StrEnum
from uuid import uuid4

from loguru import logger

from app import settings
from app.addons import complete_open_services, dump_services
from app.cache import acquire_sweep_lock, release_sweep_lock
from app.crud import booking_crud
from app.schemas import BookingResponse, SweepResult
from app.settlement import settle_booking, settle_completed_booking


class Outcome(StrEnum):
    SETTLED = "settled"
    SKIPPED = "skipped"


async def complete_booking(booking: BookingResponse, now: datetime) -> Outcome:
    services, changed = complete_open_services(booking.additional_services, now)
    if not await booking_crud.mark_completed(booking.id, now, dump_services(services)):
        logger.info("Booking {} is no longer confirmed, skipping", booking.id)
        return Outcome.SKIPPED

    logger.debug("Booking {} completed ({} services closed)", booking.id, changed)
    settled = await settle_completed_booking(booking.id, now=now)
    return Outcome.SETTLED if settled is not None else Outcome.SKIPPED


async def _resettle(booking: BookingResponse, now: datetime) -> Outcome:
    result = await settle_booking(booking.id, now=now)
    return Outcome.SETTLED if result.applied else Outcome.SKIPPED


async def _run_isolated(
    bookings: list[BookingResponse], jobs: list[Awaitable[Outcome]]
) -> tuple[int, int, int]:
    """Run per-booking jobs concurrently. Returns (settled, skipped, failed)."""
    timeout = settings.SETTLEMENT_TIMEOUT_SECONDS
    results = await asyncio.gather(
        *(asyncio.wait_for(job, timeout=timeout) for job in jobs),
        return_exceptions=True,
    )

    settled = skipped = failed = 0
    for booking, result in zip(bookings, results):
        if isinstance(result, TimeoutError):
            failed += 1
            logger.error("Booking {} timed out after {}s", booking.id, timeout)
        elif isinstance(result, BaseException):
            failed += 1
            logger.opt(exception=result).error("Booking {} failed", booking.id)
        elif result is Outcome.SETTLED:
            settled += 1
        else:
            skipped += 1
    return settled, skipped, failed


async def complete_due_bookings(now: datetime | None = None) -> SweepResult:
    """
    Complete and settle every confirmed booking whose checkout is at or
    before `now`, then retry settlement for completed bookings that were
    never settled.

    Raises only if the eligible bookings cannot be loaded at all.
    """
    now = now or datetime.now(timezone.utc)
    token = uuid4().hex

    if not await acquire_sweep_lock(token):
        logger.info("Booking sweep already running, skipping this trigger")
        return SweepResult(message="Sweep already running")

    try:
        due = await booking_crud.list_due_for_completion(now)
        # Leftovers from earlier sweeps only; loaded before this run completes anything
        unsettled = await booking_crud.list_unsettled_completed()
        logger.info(
            "Booking sweep: {} bookings past checkout, {} awaiting settlement",
            len(due),
            len(unsettled),
        )

        completed, skipped, failed = await _run_isolated(
            due, [complete_booking(b, now) for b in due]
        )
        retried, _, retry_failed = await _run_isolated(
            unsettled, [_resettle(b, now) for b in unsettled]
        )
    finally:
        await release_sweep_lock(token)

    result = SweepResult(
        message=f"Completed {completed} bookings",
        completed=completed,
        failed=failed + retry_failed,
        skipped=skipped,
        retried=retried,
    )
    logger.info(
        "Booking sweep done: completed={} skipped={} failed={} retried={}",
        result.completed,
        result.skipped,
        result.failed,
        result.retried,
    )
    return result
