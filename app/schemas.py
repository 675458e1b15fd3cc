from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import StrEnum
from uuid import UUID

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)

from app.models import (
    BookingStatus,
    CancellationPolicy,
    HostPayoutStatus,
    PayoutStatus,
    TransactionStatus,
    TransactionType,
)

__all__ = [
    "AdditionalService",
    "BookingCancel",
    "BookingFilters",
    "BookingResponse",
    "BookingStatus",
    "BookingStatusUpdate",
    "CancellationPolicy",
    "HostBalance",
    "HostPayoutCreate",
    "HostPayoutResponse",
    "HostPayoutStatus",
    "HostPayoutSummary",
    "HostProfileResponse",
    "PendingPayoutBooking",
    "ServiceStatus",
    "ServiceStatusChange",
    "ServiceStatusUpdate",
    "SweepResult",
    "TransactionFilters",
    "TransactionResponse",
]


class ServiceStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"


def _normalize_status(v):
    # Older rows stored upper-case statuses or none at all
    if v is None:
        return ServiceStatus.PENDING
    if isinstance(v, str):
        return v.lower()
    return v


# ---------------------------------------------------------------------------
# Additional services (embedded in Booking.additional_services)
# ---------------------------------------------------------------------------


class ServiceStatusChange(BaseModel):
    status: ServiceStatus
    at: datetime
    by: str

    normalize_status = field_validator("status", mode="before")(_normalize_status)


class AdditionalService(BaseModel):
    """
    One add-on ordered with a stay (airport pickup, breakfast, tour...).
    Accepts the legacy camelCase keys on input, always dumps snake_case.
    Unknown keys are preserved so a read-modify-write never drops data.
    """

    id: str
    name: str | None = None
    price: Decimal = Decimal("0")
    quantity: int = 1
    status: ServiceStatus = ServiceStatus.PENDING
    status_history: list[ServiceStatusChange] = Field(
        default_factory=list,
        validation_alias=AliasChoices("status_history", "statusHistory"),
    )
    updated_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("updated_at", "updatedAt")
    )

    model_config = ConfigDict(extra="allow")

    normalize_status = field_validator("status", mode="before")(_normalize_status)

    @field_validator("status_history", mode="before")
    @classmethod
    def history_as_list(cls, v):
        return v if isinstance(v, list) else []


# ---------------------------------------------------------------------------
# Bookings
# ---------------------------------------------------------------------------


class BookingResponse(BaseModel):
    id: UUID
    listing_id: UUID
    listing_title: str | None = None
    host_id: UUID
    guest_id: UUID | None = None
    check_in: datetime
    check_out: datetime
    nights: int = 1
    status: BookingStatus
    cancellation_policy: CancellationPolicy = CancellationPolicy.FLEXIBLE
    currency: str
    total_price: Decimal
    service_fee: Decimal = Decimal("0")
    platform_commission: Decimal = Decimal("0")
    host_earnings: Decimal = Decimal("0")
    host_payout_status: HostPayoutStatus = HostPayoutStatus.PENDING
    host_payout_settled_at: datetime | None = None
    host_payout_request_id: UUID | None = None
    additional_services: list[AdditionalService] = Field(default_factory=list)
    confirmed_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancelled_by: UUID | None = None
    cancellation_reason: str | None = None
    refund_amount: Decimal = Decimal("0")
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("additional_services", mode="before")
    @classmethod
    def services_as_list(cls, v):
        return v if isinstance(v, list) else []

    @field_validator("check_in", "check_out", mode="after")
    @classmethod
    def to_utc(cls, v: datetime) -> datetime:
        """Ensure a datetime is UTC-aware, handling both aware and naive inputs."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


class BookingStatusUpdate(BaseModel):
    status: BookingStatus

    @field_validator("status", mode="before")
    @classmethod
    def lower_status(cls, v):
        return v.lower() if isinstance(v, str) else v


class ServiceStatusUpdate(BaseModel):
    service_id: str = Field(min_length=1)
    status: ServiceStatus

    normalize_status = field_validator("status", mode="before")(_normalize_status)


class BookingCancel(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


class BookingFilters(BaseModel):
    """Bind to a FastAPI route via Depends(BookingFilters)."""

    listing_id: UUID | None = None
    status: BookingStatus | None = None

    # Pagination
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class SweepResult(BaseModel):
    message: str
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    retried: int = 0


# ---------------------------------------------------------------------------
# Host balance, payouts and ledger
# ---------------------------------------------------------------------------


class HostProfileResponse(BaseModel):
    user_id: UUID
    total_earnings: Decimal
    available_balance: Decimal
    pending_payout_balance: Decimal

    model_config = ConfigDict(from_attributes=True)


class HostBalance(BaseModel):
    available: Decimal = Decimal("0")
    pending: Decimal = Decimal("0")
    lifetime: Decimal = Decimal("0")


class PendingPayoutBooking(BaseModel):
    id: UUID
    amount: Decimal
    completed_at: datetime | None = None


class HostPayoutResponse(BaseModel):
    id: UUID
    host_id: UUID
    amount: Decimal
    status: PayoutStatus
    payout_method: str | None = None
    notes: str | None = None
    booking_ids: list[UUID] = Field(default_factory=list)
    requested_at: datetime

    model_config = ConfigDict(from_attributes=True)


class HostPayoutSummary(BaseModel):
    balance: HostBalance
    pending_bookings: list[PendingPayoutBooking]
    payouts: list[HostPayoutResponse]


class HostPayoutCreate(BaseModel):
    bookings: list[UUID] | None = None
    amount: Decimal | None = None
    method: str | None = Field(default=None, max_length=100)
    note: str | None = Field(default=None, max_length=1000)

    @field_validator("method", "note", mode="after")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None


class TransactionResponse(BaseModel):
    id: UUID
    user_id: UUID
    type: TransactionType
    amount: Decimal
    status: TransactionStatus
    description: str
    reference_id: UUID
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransactionFilters(BaseModel):
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)
