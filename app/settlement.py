from __future__ import annotations

from datetime import datetime, timezone
from typing import NamedTuple
from uuid import UUID

from loguru import logger

from app.cache import invalidate_balance_cache
from app.crud import booking_crud
from app.finance import compute_booking_financials, is_settled
from app.schemas import BookingResponse

GENERIC_DESCRIPTION = "Booking payment"


class SettlementResult(NamedTuple):
    booking: BookingResponse | None
    applied: bool  # False when nothing was written by this call


def payment_description(booking: BookingResponse) -> str:
    if booking.listing_title:
        return f"{GENERIC_DESCRIPTION} for {booking.listing_title}"
    return GENERIC_DESCRIPTION


async def settle_booking(
    booking_id: UUID, now: datetime | None = None
) -> SettlementResult:
    """
    Split a completed booking's price into platform commission and host
    earnings, credit the host and write the ledger entry, exactly once.

    `applied` is True only for the call that recorded the settlement. A missing
    booking gives `(None, False)`; an already-settled one is returned unchanged.
    """
    booking = await booking_crud.get_booking(booking_id)
    if booking is None:
        logger.warning("Settlement skipped: booking {} not found", booking_id)
        return SettlementResult(None, False)

    if is_settled(booking):
        logger.debug("Booking {} already settled", booking_id)
        return SettlementResult(booking, False)

    financials = compute_booking_financials(
        booking.total_price,
        service_fee=booking.service_fee,
        platform_commission=booking.platform_commission,
        host_earnings=booking.host_earnings,
    )
    applied = await booking_crud.apply_settlement(
        booking_id=booking.id,
        host_id=booking.host_id,
        financials=financials,
        description=payment_description(booking),
        now=now or datetime.now(timezone.utc),
    )
    if not applied:
        # Settled by a concurrent caller between our read and write
        logger.info("Booking {} settled concurrently, nothing to do", booking_id)
        return SettlementResult(await booking_crud.get_booking(booking_id), False)

    logger.info(
        "Settled booking {}: commission={} host_share={} host={}",
        booking_id,
        financials.commission,
        financials.host_share,
        booking.host_id,
    )
    await invalidate_balance_cache(booking.host_id)
    return SettlementResult(await booking_crud.get_booking(booking_id), True)


async def settle_completed_booking(
    booking_id: UUID, now: datetime | None = None
) -> BookingResponse | None:
    """The booking after settlement, or None if it does not exist."""
    result = await settle_booking(booking_id, now=now)
    return result.booking
