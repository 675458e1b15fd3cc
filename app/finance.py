"""
Booking money arithmetic: platform/host split and cancellation refunds.

Pure functions over Decimal amounts, no I/O. Shared by settlement, the host
payouts endpoints and cancellation.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import NamedTuple

from app import settings
from app.models import CancellationPolicy

CENT = Decimal("0.01")
ZERO = Decimal("0")


class BookingFinancials(NamedTuple):
    commission: Decimal
    host_share: Decimal


def _money(value) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_booking_financials(
    total_price,
    service_fee=ZERO,
    platform_commission=ZERO,
    host_earnings=ZERO,
    rate: Decimal | None = None,
) -> BookingFinancials:
    """
    Split a booking's price between the platform and the host.

    commission: recorded commission, else the service fee, else total × rate.
    host share: recorded host earnings, else what is left of the total.
    Both are clamped at zero.
    """
    if rate is None:
        rate = settings.PLATFORM_COMMISSION_RATE

    total = _money(total_price)
    fee = _money(service_fee)
    recorded_commission = _money(platform_commission)
    recorded_earnings = _money(host_earnings)

    if recorded_commission > ZERO:
        commission = recorded_commission
    elif fee > ZERO:
        commission = fee
    else:
        commission = _money(total * rate)
    commission = max(commission, ZERO)

    if recorded_earnings > ZERO:
        host_share = recorded_earnings
    else:
        host_share = max(total - commission, ZERO)

    return BookingFinancials(commission=commission, host_share=max(host_share, ZERO))


def is_settled(booking) -> bool:
    """True once settlement has been recorded on the booking."""
    return (
        booking.host_payout_settled_at is not None
        or _money(booking.platform_commission) > ZERO
        or _money(booking.host_earnings) > ZERO
    )


# (hours before check-in for the better refund, refund ratio if met, ratio if not)
_REFUND_RULES: dict[CancellationPolicy, tuple[int, Decimal, Decimal]] = {
    CancellationPolicy.FLEXIBLE: (24, Decimal("1"), ZERO),
    CancellationPolicy.MODERATE: (120, Decimal("1"), Decimal("0.5")),
    CancellationPolicy.STRICT: (168, Decimal("1"), ZERO),
    CancellationPolicy.SUPER_STRICT: (336, Decimal("0.5"), ZERO),
}


def compute_refund_amount(
    policy: CancellationPolicy, total_price, hours_until_check_in: float
) -> Decimal:
    threshold, early_ratio, late_ratio = _REFUND_RULES[policy]
    ratio = early_ratio if hours_until_check_in >= threshold else late_ratio
    return _money(_money(total_price) * ratio)
