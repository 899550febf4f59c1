from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from rpm_core.shared.exceptions import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """
    Ensure datetime is timezone-aware in UTC. Naive values are assumed to be UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError(f"unknown timezone '{name}'") from exc


def localize(value: datetime, zone: ZoneInfo) -> datetime:
    """Naive values are wall-clock time in `zone`; aware values keep their instant."""
    if value.tzinfo is None:
        return value.replace(tzinfo=zone).astimezone(timezone.utc)
    return value.astimezone(timezone.utc)


def parse_epoch_timestamp(value: object) -> object:
    """Pydantic `before` hook: accept integer/float epoch seconds as datetimes."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return value
