from datetime import date
from typing import Any

from ..schemas import ExpiryStatus


def expiry_status(end_date: str | None, today: date, warning_days: int) -> tuple[int | None, ExpiryStatus | None]:
    if not end_date:
        return None, None
    try:
        expires = date.fromisoformat(end_date[:10])
    except ValueError:
        return None, None
    days_remaining = (expires - today).days
    if days_remaining < 0:
        return days_remaining, ExpiryStatus.expired
    if days_remaining <= warning_days:
        return days_remaining, ExpiryStatus.expiring
    return days_remaining, ExpiryStatus.active


def annotate_services(platforms: list[dict[str, Any]], today: date, warning_days: int) -> list[dict[str, Any]]:
    annotated = []
    for platform in platforms:
        services = []
        for service in platform.get("services", []):
            days_remaining, status = expiry_status(service.get("end_date"), today, warning_days)
            services.append({**service, "days_remaining": days_remaining, "status": status})
        annotated.append({**platform, "services": services})
    return annotated
