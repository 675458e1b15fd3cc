from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from tortoise.expressions import F
from tortoise.transactions import in_transaction

from app.addons import dump_services
from app.finance import BookingFinancials
from app.models import (
    Booking,
    BookingStatus,
    HostPayout,
    HostPayoutStatus,
    HostProfile,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from app.schemas import (
    BookingFilters,
    BookingResponse,
    HostPayoutResponse,
    HostProfileResponse,
    TransactionFilters,
    TransactionResponse,
)

_CANCELLABLE = [BookingStatus.PENDING, BookingStatus.CONFIRMED]


class BookingCRUD:
    async def get_booking(
        self,
        booking_id: UUID,
        guest_id: UUID | None = None,
        host_id: UUID | None = None,
    ) -> BookingResponse | None:
        if guest_id is not None:
            inst = await Booking.get_or_none(id=booking_id, guest_id=guest_id)
        elif host_id is not None:
            inst = await Booking.get_or_none(id=booking_id, host_id=host_id)
        else:
            inst = await Booking.get_or_none(id=booking_id)

        if not inst:
            return None
        return BookingResponse.model_validate(inst, from_attributes=True)

    async def list_bookings(
        self,
        filters: BookingFilters,
        guest_id: UUID | None = None,
        host_id: UUID | None = None,
    ) -> list[BookingResponse]:
        qs = Booking.all()

        if guest_id is not None:
            qs = qs.filter(guest_id=guest_id)
        if host_id is not None:
            qs = qs.filter(host_id=host_id)
        if filters.listing_id is not None:
            qs = qs.filter(listing_id=filters.listing_id)
        if filters.status is not None:
            qs = qs.filter(status=filters.status)

        offset = (filters.page - 1) * filters.page_size
        qs = qs.offset(offset).limit(filters.page_size)

        bookings = await qs
        return [
            BookingResponse.model_validate(b, from_attributes=True) for b in bookings
        ]

    async def list_due_for_completion(self, now: datetime) -> list[BookingResponse]:
        """Confirmed bookings whose checkout has passed."""
        bookings = await Booking.filter(
            status=BookingStatus.CONFIRMED, check_out__lte=now
        )
        return [
            BookingResponse.model_validate(b, from_attributes=True) for b in bookings
        ]

    async def list_unsettled_completed(self) -> list[BookingResponse]:
        """Completed bookings whose settlement never committed."""
        bookings = await Booking.filter(
            status=BookingStatus.COMPLETED,
            host_payout_settled_at__isnull=True,
            platform_commission=0,
            host_earnings=0,
        )
        return [
            BookingResponse.model_validate(b, from_attributes=True) for b in bookings
        ]

    async def mark_completed(
        self, booking_id: UUID, now: datetime, additional_services: list[dict]
    ) -> bool:
        """
        Move a booking from CONFIRMED to COMPLETED.
        Returns False when the booking is no longer CONFIRMED (e.g. another
        sweep got there first).
        """
        updated = await Booking.filter(
            id=booking_id, status=BookingStatus.CONFIRMED
        ).update(
            status=BookingStatus.COMPLETED,
            completed_at=now,
            additional_services=additional_services,
            updated_at=now,
        )
        return updated == 1

    async def update_booking_status(
        self,
        booking_id: UUID,
        status: BookingStatus,
        expected_status: BookingStatus,
        **changes,
    ) -> BookingResponse | None:
        """
        Move a booking from `expected_status` to `status`.
        None when the booking is gone or its status changed since it was read.
        """
        updated = await Booking.filter(id=booking_id, status=expected_status).update(
            status=status, updated_at=datetime.now(timezone.utc), **changes
        )
        if not updated:
            return None
        return await self.get_booking(booking_id)

    async def update_services(
        self,
        booking_id: UUID,
        additional_services: list[dict],
        expected_status: BookingStatus,
        expected_services: list[dict],
    ) -> BookingResponse | None:
        """
        Replace the add-on list. None when the booking is gone, or its status
        or add-ons no longer match what the caller read.
        """
        async with in_transaction() as conn:
            inst = (
                await Booking.filter(id=booking_id)
                .select_for_update()
                .using_db(conn)
                .get_or_none()
            )
            if not inst:
                return None
            current = BookingResponse.model_validate(inst, from_attributes=True)
            if (
                current.status != expected_status
                or dump_services(current.additional_services) != expected_services
            ):
                return None
            inst.additional_services = additional_services
            await inst.save(
                update_fields=["additional_services", "updated_at"], using_db=conn
            )
        return BookingResponse.model_validate(inst, from_attributes=True)

    async def cancel_booking(
        self,
        booking_id: UUID,
        cancelled_by: UUID,
        reason: str | None,
        refund_amount: Decimal,
        now: datetime,
    ) -> BookingResponse | None:
        """Cancel a pending/confirmed booking. None if it is no longer cancellable."""
        updated = await Booking.filter(
            id=booking_id, status__in=_CANCELLABLE
        ).update(
            status=BookingStatus.CANCELLED,
            cancelled_at=now,
            cancelled_by=cancelled_by,
            cancellation_reason=reason,
            refund_amount=refund_amount,
            confirmed_at=None,
            completed_at=None,
            updated_at=now,
        )
        if not updated:
            return None
        return await self.get_booking(booking_id)

    async def apply_settlement(
        self,
        booking_id: UUID,
        host_id: UUID,
        financials: BookingFinancials,
        description: str,
        now: datetime,
    ) -> bool:
        """
        Record a settlement as one transaction: booking split, host balance
        increment and ledger entry. Returns False without writing anything
        when the booking was already settled.
        """
        async with in_transaction() as conn:
            updated = (
                await Booking.filter(
                    id=booking_id, host_payout_settled_at__isnull=True
                )
                .using_db(conn)
                .update(
                    platform_commission=financials.commission,
                    host_earnings=financials.host_share,
                    host_payout_status=HostPayoutStatus.PENDING,
                    host_payout_settled_at=now,
                    updated_at=now,
                )
            )
            if not updated:
                return False

            # get_or_create falls back to a read when a concurrent insert wins
            await HostProfile.get_or_create(user_id=host_id, using_db=conn)
            await (
                HostProfile.filter(user_id=host_id)
                .using_db(conn)
                .update(
                    total_earnings=F("total_earnings") + financials.host_share,
                    available_balance=F("available_balance") + financials.host_share,
                )
            )

            await Transaction.create(
                user_id=host_id,
                type=TransactionType.BOOKING_PAYMENT,
                amount=financials.host_share,
                status=TransactionStatus.COMPLETED,
                description=description,
                reference_id=booking_id,
                using_db=conn,
            )
        return True

    async def list_pending_payout_bookings(
        self, host_id: UUID, booking_ids: list[UUID] | None = None
    ) -> list[BookingResponse]:
        """Completed bookings whose host share has not been requested yet."""
        qs = Booking.filter(
            host_id=host_id,
            status=BookingStatus.COMPLETED,
            host_payout_status=HostPayoutStatus.PENDING,
        )
        if booking_ids:
            qs = qs.filter(id__in=booking_ids)
        bookings = await qs
        return [
            BookingResponse.model_validate(b, from_attributes=True) for b in bookings
        ]


class HostLedgerCRUD:
    async def get_host_profile(self, host_id: UUID) -> HostProfileResponse | None:
        inst = await HostProfile.get_or_none(user_id=host_id)
        if not inst:
            return None
        return HostProfileResponse.model_validate(inst, from_attributes=True)

    async def list_payouts(
        self, host_id: UUID, limit: int = 50
    ) -> list[HostPayoutResponse]:
        payouts = await HostPayout.filter(host_id=host_id).limit(limit)
        return [
            HostPayoutResponse.model_validate(p, from_attributes=True) for p in payouts
        ]

    async def create_payout(
        self,
        host_id: UUID,
        amount: Decimal,
        booking_ids: list[UUID],
        payout_method: str | None,
        notes: str | None,
        tolerance: Decimal,
    ) -> HostPayoutResponse | None:
        """
        Open a payout request: move `amount` from available to pending balance
        and flag the bookings as requested, all in one transaction.
        Returns None if the available balance no longer covers the amount.
        """
        async with in_transaction() as conn:
            moved = (
                await HostProfile.filter(
                    user_id=host_id, available_balance__gte=amount - tolerance
                )
                .using_db(conn)
                .update(
                    available_balance=F("available_balance") - amount,
                    pending_payout_balance=F("pending_payout_balance") + amount,
                )
            )
            if not moved:
                return None

            payout = await HostPayout.create(
                host_id=host_id,
                amount=amount,
                payout_method=payout_method,
                notes=notes,
                booking_ids=[str(b) for b in booking_ids],
                using_db=conn,
            )

            await (
                Booking.filter(
                    id__in=booking_ids,
                    host_id=host_id,
                    host_payout_status=HostPayoutStatus.PENDING,
                )
                .using_db(conn)
                .update(
                    host_payout_status=HostPayoutStatus.REQUESTED,
                    host_payout_request_id=payout.id,
                )
            )

            await Transaction.create(
                user_id=host_id,
                type=TransactionType.PAYOUT,
                amount=amount,
                status=TransactionStatus.PENDING,
                description="Payout request",
                reference_id=payout.id,
                using_db=conn,
            )

        return HostPayoutResponse.model_validate(payout, from_attributes=True)

    async def list_transactions(
        self, host_id: UUID, filters: TransactionFilters
    ) -> list[TransactionResponse]:
        offset = (filters.page - 1) * filters.page_size
        transactions = (
            await Transaction.filter(user_id=host_id)
            .order_by("-created_at")
            .offset(offset)
            .limit(filters.page_size)
        )
        return [
            TransactionResponse.model_validate(t, from_attributes=True)
            for t in transactions
        ]


booking_crud = BookingCRUD()
ledger_crud = HostLedgerCRUD()
