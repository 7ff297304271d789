"""Time helpers shared by the services."""

from datetime import UTC, date, datetime, time
from zoneinfo import ZoneInfo

from patientflow.config import settings


def utcnow() -> datetime:
    """Current time, timezone-aware UTC."""
    return datetime.now(UTC)


def structure_zone() -> ZoneInfo:
    return ZoneInfo(settings.structure_timezone)


def local_day(moment: datetime | None = None) -> date:
    """Calendar day of ``moment`` in the structure's timezone."""
    moment = moment or utcnow()
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(structure_zone()).date()


def start_of_day(moment: datetime | None = None) -> datetime:
    """Midnight of the structure-local day containing ``moment``, expressed in UTC."""
    zone = structure_zone()
    midnight = datetime.combine(local_day(moment), time.min, tzinfo=zone)
    return midnight.astimezone(UTC)


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from ``start`` to ``end``; naive values are read as UTC."""
    if start.tzinfo is None:
        start = start.replace(tzinfo=UTC)
    if end.tzinfo is None:
        end = end.replace(tzinfo=UTC)
    return int((end - start).total_seconds() // 60)
