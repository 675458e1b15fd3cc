import asyncio
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger

from app import settings
from app.cache import get_balance_cache, invalidate_balance_cache, set_balance_cache
from app.crud import booking_crud, ledger_crud
from app.deps import CurrentUser, can_manage_payouts
from app.finance import compute_booking_financials
from app.schemas import (
    HostBalance,
    HostPayoutCreate,
    HostPayoutResponse,
    HostPayoutSummary,
    PendingPayoutBooking,
    TransactionFilters,
    TransactionResponse,
)

router = APIRouter(prefix="/host", tags=["host"])


def _host_share(booking) -> Decimal:
    return compute_booking_financials(
        booking.total_price,
        service_fee=booking.service_fee,
        platform_commission=booking.platform_commission,
        host_earnings=booking.host_earnings,
    ).host_share


@router.get("/payouts", response_model=HostPayoutSummary)
async def get_payout_summary(
    current_user: CurrentUser = Depends(can_manage_payouts),
) -> HostPayoutSummary:
    """Balance, bookings not yet paid out, and recent payout requests."""
    cached = await get_balance_cache(current_user.id)
    if cached is not None:
        logger.debug("Cache hit for host balance: host_id={}", current_user.id)
        return HostPayoutSummary.model_validate(cached)

    profile, payouts, bookings = await asyncio.gather(
        ledger_crud.get_host_profile(current_user.id),
        ledger_crud.list_payouts(current_user.id),
        booking_crud.list_pending_payout_bookings(current_user.id),
    )

    balance = HostBalance()
    if profile is not None:
        balance = HostBalance(
            available=profile.available_balance,
            pending=profile.pending_payout_balance,
            lifetime=profile.total_earnings,
        )

    summary = HostPayoutSummary(
        balance=balance,
        pending_bookings=[
            PendingPayoutBooking(
                id=b.id, amount=_host_share(b), completed_at=b.completed_at
            )
            for b in bookings
        ],
        payouts=payouts,
    )
    await set_balance_cache(current_user.id, summary.model_dump(mode="json"))
    return summary


@router.post(
    "/payouts",
    response_model=HostPayoutResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_payout(
    payload: HostPayoutCreate,
    current_user: CurrentUser = Depends(can_manage_payouts),
) -> HostPayoutResponse:
    profile, bookings = await asyncio.gather(
        ledger_crud.get_host_profile(current_user.id),
        booking_crud.list_pending_payout_bookings(
            current_user.id, booking_ids=payload.bookings
        ),
    )

    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Host profile is not activated for payouts",
        )
    if not bookings:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No bookings are eligible for a payout",
        )

    total_from_bookings = sum((_host_share(b) for b in bookings), Decimal("0"))
    amount = payload.amount if payload.amount is not None else total_from_bookings

    if amount <= 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Payout amount must be greater than 0",
        )
    if amount - total_from_bookings > settings.PAYOUT_TOLERANCE:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Requested amount exceeds the total of the selected bookings",
        )
    if amount - profile.available_balance > settings.PAYOUT_TOLERANCE:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Available balance is too low for this payout",
        )

    payout = await ledger_crud.create_payout(
        host_id=current_user.id,
        amount=amount,
        booking_ids=[b.id for b in bookings],
        payout_method=payload.method,
        notes=payload.note,
        tolerance=settings.PAYOUT_TOLERANCE,
    )
    if payout is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Available balance changed, please retry",
        )

    logger.info(
        "Payout {} requested by host {} for {}", payout.id, current_user.id, amount
    )
    await invalidate_balance_cache(current_user.id)
    return payout


@router.get("/transactions", response_model=list[TransactionResponse])
async def list_transactions(
    filters: TransactionFilters = Depends(),
    current_user: CurrentUser = Depends(can_manage_payouts),
) -> list[TransactionResponse]:
    return await ledger_crud.list_transactions(current_user.id, filters)
