from __future__ import annotations

from datetime import datetime

from app.schemas import AdditionalService, ServiceStatus, ServiceStatusChange

SYSTEM_ACTOR = "system"

_OPEN_STATUSES = {ServiceStatus.PENDING, ServiceStatus.CONFIRMED}


def with_status(
    service: AdditionalService, status: ServiceStatus, at: datetime, by: str
) -> AdditionalService:
    """Copy of `service` moved to `status`, with the change appended to its history."""
    return service.model_copy(
        update={
            "status": status,
            "updated_at": at,
            "status_history": [
                *service.status_history,
                ServiceStatusChange(status=status, at=at, by=by),
            ],
        }
    )


def complete_open_services(
    services: list[AdditionalService], at: datetime, by: str = SYSTEM_ACTOR
) -> tuple[list[AdditionalService], int]:
    """
    Mark every pending/confirmed service completed.
    Returns the new list and how many services changed; finished ones are kept as-is.
    """
    result = []
    changed = 0
    for service in services:
        if service.status in _OPEN_STATUSES:
            result.append(with_status(service, ServiceStatus.COMPLETED, at, by))
            changed += 1
        else:
            result.append(service)
    return result, changed


def dump_services(services: list[AdditionalService]) -> list[dict]:
    return [s.model_dump(mode="json") for s in services]
