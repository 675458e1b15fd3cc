from enum import StrEnum


class BookingScope(StrEnum):
    # Guest scopes
    READ = "bookings:read"  # view own bookings
    CANCEL = "bookings:cancel"  # cancel own booking

    # Host scopes
    MANAGE = "bookings:manage"  # confirm / cancel bookings and services of own listings
    PAYOUTS = "host:payouts"  # view balance, request payouts

    # Admin scopes
    ADMIN = "admin:bookings"
    ADMIN_READ = "admin:bookings:read"
    ADMIN_WRITE = "admin:bookings:write"


BOOKING_SCOPE_DESCRIPTIONS: dict[str, str] = {
    BookingScope.READ: "View your own bookings.",
    BookingScope.CANCEL: "Cancel your own pending or confirmed booking.",
    BookingScope.MANAGE: "Confirm or cancel bookings and add-ons for your listings.",
    BookingScope.PAYOUTS: "View your earnings balance and request payouts.",
    BookingScope.ADMIN_READ: "Read any booking regardless of owner (admin).",
    BookingScope.ADMIN_WRITE: "Change any booking or service status (admin).",
}
