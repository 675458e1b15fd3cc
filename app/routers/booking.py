from datetime import datetime, timezone
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger

from app.addons import dump_services, with_status
from app.crud import booking_crud
from app.deps import (
    CurrentUser,
    PaymentsClient,
    can_read_or_manage_booking,
    get_current_user,
    get_payments_client,
)
from app.finance import compute_refund_amount
from app.schemas import (
    BookingCancel,
    BookingFilters,
    BookingResponse,
    BookingStatus,
    BookingStatusUpdate,
    ServiceStatus,
    ServiceStatusUpdate,
)
from app.scopes import BookingScope
from app.settlement import settle_completed_booking

router = APIRouter(prefix="/bookings", tags=["bookings"])


# ---------------------------------------------------------------------------
# Transition tables
# ---------------------------------------------------------------------------

_HOST_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.CANCELLED},
    BookingStatus.CANCELLED: set(),
    BookingStatus.COMPLETED: set(),
}

# Admins can also reopen bookings and complete them by hand
_ADMIN_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {
        BookingStatus.PENDING,
        BookingStatus.CANCELLED,
        BookingStatus.COMPLETED,
    },
    BookingStatus.CANCELLED: {BookingStatus.PENDING, BookingStatus.CONFIRMED},
    BookingStatus.COMPLETED: set(),
}

_HOST_SERVICE_TRANSITIONS: dict[ServiceStatus, set[ServiceStatus]] = {
    ServiceStatus.PENDING: {ServiceStatus.CONFIRMED, ServiceStatus.COMPLETED},
    ServiceStatus.CONFIRMED: {ServiceStatus.PENDING, ServiceStatus.COMPLETED},
    ServiceStatus.COMPLETED: set(),
}

_ADMIN_SERVICE_TRANSITIONS: dict[ServiceStatus, set[ServiceStatus]] = {
    ServiceStatus.PENDING: {ServiceStatus.CONFIRMED, ServiceStatus.COMPLETED},
    ServiceStatus.CONFIRMED: {ServiceStatus.PENDING, ServiceStatus.COMPLETED},
    ServiceStatus.COMPLETED: {ServiceStatus.PENDING, ServiceStatus.CONFIRMED},
}


def _assert_can_manage(booking: BookingResponse, current_user: CurrentUser) -> None:
    """Only the listing's host (with MANAGE) or an admin may change a booking."""
    if current_user.is_admin:
        return
    is_host = current_user.id == booking.host_id
    if not (is_host and BookingScope.MANAGE in current_user.scopes):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=(
                f"Requires '{BookingScope.MANAGE}' scope as the listing host, "
                "or admin access."
            ),
        )


def _assert_transition(old, new, allowed: dict) -> None:
    targets = allowed.get(old, set())
    if new not in targets:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=(
                f"Cannot transition from '{old}' to '{new}'. "
                f"Allowed: {sorted(t.value for t in targets)}"
            ),
        )


def _status_changes(
    new_status: BookingStatus, now: datetime, current_user: CurrentUser
) -> dict:
    """Timestamp bookkeeping that goes with each target status."""
    if new_status == BookingStatus.CONFIRMED:
        return {
            "confirmed_at": now,
            "cancelled_at": None,
            "cancelled_by": None,
            "cancellation_reason": None,
        }
    if new_status == BookingStatus.COMPLETED:
        return {"completed_at": now}
    if new_status == BookingStatus.PENDING:
        return {
            "confirmed_at": None,
            "cancelled_at": None,
            "cancelled_by": None,
            "cancellation_reason": None,
            "completed_at": None,
        }
    return {
        "cancelled_at": now,
        "cancelled_by": current_user.id,
        "confirmed_at": None,
        "completed_at": None,
    }


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/", response_model=list[BookingResponse])
async def list_bookings(
    filters: BookingFilters = Depends(),
    current_user: CurrentUser = Depends(can_read_or_manage_booking),
) -> list[BookingResponse]:
    is_manager = BookingScope.MANAGE in current_user.scopes
    is_reader = BookingScope.READ in current_user.scopes

    if current_user.is_admin_reader:
        return await booking_crud.list_bookings(filters=filters)
    if is_manager and not is_reader:
        return await booking_crud.list_bookings(
            filters=filters, host_id=current_user.id
        )
    return await booking_crud.list_bookings(filters=filters, guest_id=current_user.id)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_user: CurrentUser = Depends(can_read_or_manage_booking),
) -> BookingResponse:
    is_manager = BookingScope.MANAGE in current_user.scopes
    is_reader = BookingScope.READ in current_user.scopes

    if current_user.is_admin_reader:
        booking = await booking_crud.get_booking(booking_id)
    elif is_manager and not is_reader:
        booking = await booking_crud.get_booking(booking_id, host_id=current_user.id)
    else:
        booking = await booking_crud.get_booking(booking_id, guest_id=current_user.id)

    if not booking:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found"
        )
    return booking


@router.patch("/{booking_id}/status", response_model=BookingResponse)
async def update_booking_status(
    booking_id: UUID,
    payload: BookingStatusUpdate,
    current_user: CurrentUser = Depends(get_current_user),
) -> BookingResponse:
    # Fetch the booking without ownership filter — we validate permissions manually
    booking = await booking_crud.get_booking(booking_id)
    if not booking:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found"
        )

    _assert_can_manage(booking, current_user)

    if booking.status == payload.status:
        return booking

    if booking.status == BookingStatus.COMPLETED:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Booking is already completed and cannot be changed",
        )

    _assert_transition(
        booking.status,
        payload.status,
        _ADMIN_TRANSITIONS if current_user.is_admin else _HOST_TRANSITIONS,
    )

    now = datetime.now(timezone.utc)
    updated = await booking_crud.update_booking_status(
        booking_id,
        payload.status,
        expected_status=booking.status,
        **_status_changes(payload.status, now, current_user),
    )
    if not updated:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Booking was changed meanwhile, please retry",
        )

    logger.info(
        "Booking {} moved {} -> {} by {}",
        booking_id,
        booking.status,
        payload.status,
        current_user.id,
    )

    if payload.status == BookingStatus.COMPLETED:
        settled = await settle_completed_booking(booking_id, now=now)
        if settled is not None:
            updated = settled

    return updated


@router.patch("/{booking_id}/services", response_model=BookingResponse)
async def update_service_status(
    booking_id: UUID,
    payload: ServiceStatusUpdate,
    current_user: CurrentUser = Depends(get_current_user),
) -> BookingResponse:
    booking = await booking_crud.get_booking(booking_id)
    if not booking:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found"
        )

    _assert_can_manage(booking, current_user)

    services = list(booking.additional_services)
    index = next(
        (i for i, s in enumerate(services) if s.id == payload.service_id), None
    )
    if index is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Service not found"
        )

    service = services[index]
    if service.status == payload.status:
        return booking

    _assert_transition(
        service.status,
        payload.status,
        _ADMIN_SERVICE_TRANSITIONS
        if current_user.is_admin
        else _HOST_SERVICE_TRANSITIONS,
    )

    services[index] = with_status(
        service, payload.status, datetime.now(timezone.utc), str(current_user.id)
    )
    updated = await booking_crud.update_services(
        booking_id,
        dump_services(services),
        expected_status=booking.status,
        expected_services=dump_services(booking.additional_services),
    )
    if not updated:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Booking was changed meanwhile, please retry",
        )
    return updated


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    payload: BookingCancel,
    current_user: CurrentUser = Depends(get_current_user),
    payments_client: PaymentsClient = Depends(get_payments_client),
) -> BookingResponse:
    booking = await booking_crud.get_booking(booking_id)
    if not booking:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found"
        )

    is_guest = (
        booking.guest_id == current_user.id
        and BookingScope.CANCEL in current_user.scopes
    )
    is_host = (
        booking.host_id == current_user.id
        and BookingScope.MANAGE in current_user.scopes
    )
    if not (is_guest or is_host):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=(
                f"Requires '{BookingScope.CANCEL}' scope as the guest, "
                f"or '{BookingScope.MANAGE}' scope as the listing host."
            ),
        )

    if booking.status == BookingStatus.CANCELLED:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Booking already cancelled",
        )
    if booking.status == BookingStatus.COMPLETED:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Completed bookings cannot be cancelled",
        )

    now = datetime.now(timezone.utc)
    if booking.check_in < now:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot cancel booking that has already started",
        )

    hours_until_check_in = (booking.check_in - now).total_seconds() / 3600
    refund_amount = compute_refund_amount(
        booking.cancellation_policy, booking.total_price, hours_until_check_in
    )

    updated = await booking_crud.cancel_booking(
        booking_id,
        cancelled_by=current_user.id,
        reason=payload.reason,
        refund_amount=refund_amount,
        now=now,
    )
    if not updated:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Booking can no longer be cancelled",
        )

    logger.info(
        "Booking {} cancelled by {} (refund {})",
        booking_id,
        current_user.id,
        refund_amount,
    )

    # Refund failure does not block the cancellation
    if refund_amount > 0:
        await payments_client.refund_booking(booking_id, refund_amount, current_user)

    return updated
