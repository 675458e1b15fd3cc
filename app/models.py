from enum import StrEnum

from tortoise import fields
from tortoise.models import Model


class BookingStatus(StrEnum):
    PENDING = "pending"  # reserved, awaiting host confirmation
    CONFIRMED = "confirmed"  # host accepted
    COMPLETED = "completed"  # stay is over, financials settled
    CANCELLED = "cancelled"  # cancelled by guest, host or admin


class HostPayoutStatus(StrEnum):
    PENDING = "pending"  # earned, not yet requested
    REQUESTED = "requested"  # part of an open payout request
    PAID = "paid"


class CancellationPolicy(StrEnum):
    FLEXIBLE = "flexible"
    MODERATE = "moderate"
    STRICT = "strict"
    SUPER_STRICT = "super_strict"


class TransactionType(StrEnum):
    BOOKING_PAYMENT = "booking_payment"
    PAYOUT = "payout"


class TransactionStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PayoutStatus(StrEnum):
    PENDING = "pending"
    PAID = "paid"
    REJECTED = "rejected"


class Booking(Model):
    id = fields.UUIDField(primary_key=True)

    listing_id = fields.UUIDField()
    listing_title = fields.CharField(max_length=255, null=True)  # snapshot
    host_id = fields.UUIDField(db_index=True)
    guest_id = fields.UUIDField(null=True)  # null for contact-only bookings

    check_in = fields.DatetimeField()
    check_out = fields.DatetimeField(db_index=True)
    nights = fields.IntField(default=1)

    status = fields.CharEnumField(BookingStatus, default=BookingStatus.PENDING)
    cancellation_policy = fields.CharEnumField(
        CancellationPolicy, default=CancellationPolicy.FLEXIBLE
    )

    currency = fields.CharField(max_length=3, default="VND")
    total_price = fields.DecimalField(max_digits=14, decimal_places=2)
    service_fee = fields.DecimalField(max_digits=14, decimal_places=2, default=0)

    # Zero until settlement; written once
    platform_commission = fields.DecimalField(
        max_digits=14, decimal_places=2, default=0
    )
    host_earnings = fields.DecimalField(max_digits=14, decimal_places=2, default=0)
    host_payout_status = fields.CharEnumField(
        HostPayoutStatus, default=HostPayoutStatus.PENDING
    )
    host_payout_settled_at = fields.DatetimeField(null=True)
    host_payout_request_id = fields.UUIDField(null=True)

    additional_services = fields.JSONField(default=list)

    confirmed_at = fields.DatetimeField(null=True)
    completed_at = fields.DatetimeField(null=True)
    cancelled_at = fields.DatetimeField(null=True)
    cancelled_by = fields.UUIDField(null=True)
    cancellation_reason = fields.TextField(null=True)
    refund_amount = fields.DecimalField(max_digits=14, decimal_places=2, default=0)

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        table = "bookings"
        ordering = ["-created_at"]


class HostProfile(Model):
    id = fields.UUIDField(primary_key=True)
    user_id = fields.UUIDField(unique=True)

    total_earnings = fields.DecimalField(max_digits=16, decimal_places=2, default=0)
    available_balance = fields.DecimalField(
        max_digits=16, decimal_places=2, default=0
    )
    pending_payout_balance = fields.DecimalField(
        max_digits=16, decimal_places=2, default=0
    )

    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        table = "host_profiles"


class Transaction(Model):
    """Ledger entry. Created once, never updated."""

    id = fields.UUIDField(primary_key=True)
    user_id = fields.UUIDField(db_index=True)
    type = fields.CharEnumField(TransactionType)
    amount = fields.DecimalField(max_digits=14, decimal_places=2)
    status = fields.CharEnumField(TransactionStatus)
    description = fields.CharField(max_length=500)
    reference_id = fields.UUIDField(db_index=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:  # type: ignore
        table = "transactions"
        ordering = ["-created_at"]


class HostPayout(Model):
    id = fields.UUIDField(primary_key=True)
    host_id = fields.UUIDField(db_index=True)
    amount = fields.DecimalField(max_digits=14, decimal_places=2)
    status = fields.CharEnumField(PayoutStatus, default=PayoutStatus.PENDING)
    payout_method = fields.CharField(max_length=100, null=True)
    notes = fields.TextField(null=True)
    booking_ids = fields.JSONField(default=list)
    requested_at = fields.DatetimeField(auto_now_add=True)

    class Meta:  # type: ignore
        table = "host_payouts"
        ordering = ["-requested_at"]
