import secrets
from dataclasses import dataclass, field
from decimal import Decimal
from functools import lru_cache
from urllib.parse import quote, unquote
from uuid import UUID

import httpx
from fastapi import Depends, Header, HTTPException, status
from loguru import logger

from app import settings
from app.scopes import BookingScope


@dataclass
class CurrentUser:
    id: UUID
    username: str
    scopes: list[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        """Full admin write access over bookings."""
        return (
            BookingScope.ADMIN in self.scopes
            or BookingScope.ADMIN_WRITE in self.scopes
        )

    @property
    def is_admin_reader(self) -> bool:
        return (
            BookingScope.ADMIN in self.scopes
            or BookingScope.ADMIN_READ in self.scopes
        )


def get_current_user(
    x_user_id: str = Header(...),
    x_username: str = Header(...),
    x_user_scopes: str = Header(default=""),
) -> CurrentUser:
    """
    Identity of the caller as forwarded by the gateway (X-User-Id,
    X-Username, X-User-Scopes). Tokens are validated upstream.
    """
    try:
        user_id = UUID(x_user_id)
    except (ValueError, TypeError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identity from gateway",
        ) from None

    scopes = x_user_scopes.split(" ") if x_user_scopes else []

    return CurrentUser(id=user_id, username=unquote(x_username), scopes=scopes)


def require_scopes(*required: str):
    """
    Dependency that 403s unless the caller holds every scope in `required`.

        current_user = Depends(require_scopes(BookingScope.PAYOUTS))
    """

    async def _dep(
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        missing = [s for s in required if s not in current_user.scopes]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing required scopes: {', '.join(missing)}",
            )
        return current_user

    return _dep


# ---------------------------------------------------------------------------
# Pre-built scope dependencies
# ---------------------------------------------------------------------------

can_manage_payouts = require_scopes(BookingScope.PAYOUTS)


async def can_read_or_manage_booking(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """
    Passes if the user can read bookings (guest/admin) OR manage bookings (host).
    - bookings:read   → guest sees own bookings
    - bookings:manage → host sees bookings for their listings
    - admin:bookings* → admin sees all
    """
    has_read = BookingScope.READ in current_user.scopes
    has_manage = BookingScope.MANAGE in current_user.scopes
    if not (has_read or has_manage or current_user.is_admin_reader):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=(
                f"Requires '{BookingScope.READ}' (guests), "
                f"'{BookingScope.MANAGE}' (hosts), "
                f"or '{BookingScope.ADMIN_READ}' (admin)."
            ),
        )
    return current_user


# ---------------------------------------------------------------------------
# Cron trigger — shared secret instead of a user identity
# ---------------------------------------------------------------------------


def cron_secret_matches(authorization: str | None, x_cron_secret: str | None) -> bool:
    """
    True if either header carries the configured secret
    (`Authorization: <secret>`, `Authorization: Bearer <secret>` or
    `X-Cron-Secret: <secret>`). Always True when no secret is configured.
    """
    expected = settings.CRON_SECRET
    if not expected:
        logger.warning("CRON_SECRET is not set — cron trigger is unauthenticated")
        return True

    candidates = []
    if authorization:
        scheme, _, token = authorization.partition(" ")
        use_token = scheme.lower() == "bearer" and token
        candidates.append(token if use_token else authorization)
    if x_cron_secret:
        candidates.append(x_cron_secret)

    return any(
        secrets.compare_digest(c.encode(), expected.encode()) for c in candidates
    )


# ---------------------------------------------------------------------------
# PaymentsClient — thin async wrapper around payments-ms internal API
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def _get_payments_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.payments_ms_url,
        timeout=httpx.Timeout(5.0),
        follow_redirects=True,
    )


class PaymentsClient:
    """
    Asks payments-ms to refund (part of) a cancelled booking's payment,
    acting as the cancelling user. Errors are logged and reported as False
    so a failed refund never undoes a cancellation.
    """

    @property
    def _client(self) -> httpx.AsyncClient:
        return _get_payments_http_client()

    def _headers(self, user: CurrentUser) -> dict[str, str]:
        return {
            "X-User-Id": str(user.id),
            "X-Username": quote(user.username),
            "X-User-Scopes": " ".join(user.scopes),
        }

    async def refund_booking(
        self, booking_id: UUID, amount: Decimal, caller: CurrentUser
    ) -> bool:
        """True when payments-ms accepted the refund request."""
        try:
            resp = await self._client.post(
                f"/payments/booking/{booking_id}/refund",
                json={"amount": str(amount)},
                headers=self._headers(caller),
            )
        except httpx.HTTPError:
            logger.warning(
                "Refund request failed for booking {}", booking_id, exc_info=True
            )
            return False
        if resp.status_code >= 400:
            logger.warning(
                "payments-ms returned {} refunding booking {}",
                resp.status_code,
                booking_id,
            )
            return False
        return True


_payments_client = PaymentsClient()


def get_payments_client() -> PaymentsClient:
    return _payments_client
