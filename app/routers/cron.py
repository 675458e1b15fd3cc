from fastapi import APIRouter, Header, status
from fastapi.responses import JSONResponse
from loguru import logger

from app.deps import cron_secret_matches
from app.schemas import SweepResult
from app.sweep import complete_due_bookings

router = APIRouter(prefix="/cron", tags=["cron"])


@router.api_route(
    "/complete-bookings",
    methods=["POST", "GET"],
    response_model=SweepResult,
    responses={
        status.HTTP_401_UNAUTHORIZED: {"description": "Missing or wrong cron secret"},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"description": "Sweep failed"},
    },
)
async def complete_bookings(
    authorization: str | None = Header(default=None),
    x_cron_secret: str | None = Header(default=None),
):
    """
    Complete and settle every confirmed booking past checkout.
    Meant to be hit by a scheduler; GET is accepted as an alias for manual runs.
    """
    if not cron_secret_matches(authorization, x_cron_secret):
        logger.warning("Rejected cron trigger with missing or wrong secret")
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": "Unauthorized"},
        )

    try:
        return await complete_due_bookings()
    except Exception:
        logger.exception("Booking completion sweep failed")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )
