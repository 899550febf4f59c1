from datetime import datetime, timedelta

import structlog
from beanie import PydanticObjectId
from bson.errors import InvalidId

from rpm_core.core.config import settings
from rpm_core.modules.enrollments.service import find_active_enrollment
from rpm_core.modules.time_entries.models import TimeEntry
from rpm_core.modules.time_entries.schemas import TimeEntryCreate, TimeEntryUpdate
from rpm_core.shared.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from rpm_core.shared.time import ensure_utc, utcnow

log = structlog.get_logger()

MIN_DURATION_MINUTES = 1
MAX_DURATION_MINUTES = 120


def validate_duration(minutes: int) -> None:
    if not MIN_DURATION_MINUTES <= minutes <= MAX_DURATION_MINUTES:
        raise ValidationError(
            f"duration must be between {MIN_DURATION_MINUTES} and {MAX_DURATION_MINUTES} minutes"
        )


def validate_entry_date(entry_date: datetime, now: datetime | None = None) -> datetime:
    """Entries attest recent work: not in the future, not older than the look-back window."""
    now = now or utcnow()
    entry_date = ensure_utc(entry_date)
    if entry_date > now:
        raise ValidationError("entry date cannot be in the future")
    lookback = settings.TIME_ENTRY_LOOKBACK_DAYS
    if entry_date < now - timedelta(days=lookback):
        raise ValidationError(f"entry date cannot be more than {lookback} days in the past")
    return entry_date


class TimeEntryService:
    async def create(self, payload: TimeEntryCreate, clinician_id: str) -> TimeEntry:
        enrollment = await find_active_enrollment(payload.patient_id, clinician_id)
        if enrollment is None:
            raise PermissionDeniedError(
                f"clinician {clinician_id} is not actively enrolled with patient {payload.patient_id}"
            )
        validate_duration(payload.duration_minutes)
        now = utcnow()
        entry = TimeEntry(
            patient_id=payload.patient_id,
            clinician_id=clinician_id,
            clinic_id=payload.clinic_id or enrollment.clinic_id,
            entry_date=validate_entry_date(payload.entry_date, now),
            duration_minutes=payload.duration_minutes,
            activity=payload.activity,
            performer_type=payload.performer_type,
            notes=payload.notes,
            created_at=now,
            updated_at=now,
        )
        await entry.insert()
        log.info(
            "time_entry_created",
            time_entry_id=str(entry.id),
            patient_id=entry.patient_id,
            clinician_id=clinician_id,
            minutes=entry.duration_minutes,
            activity=entry.activity.value,
        )
        return entry

    async def list_for_patient(
        self,
        patient_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
        skip: int = 0,
    ) -> list[TimeEntry]:
        query = TimeEntry.find(TimeEntry.patient_id == patient_id)
        if start:
            query = query.find(TimeEntry.entry_date >= ensure_utc(start))
        if end:
            query = query.find(TimeEntry.entry_date <= ensure_utc(end))
        return await query.sort("-entry_date").skip(skip).limit(limit).to_list()

    async def update(
        self, entry_id: str, payload: TimeEntryUpdate, clinician_id: str
    ) -> TimeEntry:
        entry = await self._get_owned(entry_id, clinician_id)
        fields_set = payload.model_fields_set
        if "duration_minutes" in fields_set and payload.duration_minutes is not None:
            validate_duration(payload.duration_minutes)
            entry.duration_minutes = payload.duration_minutes
        if "entry_date" in fields_set and payload.entry_date is not None:
            entry.entry_date = validate_entry_date(payload.entry_date)
        if "activity" in fields_set and payload.activity is not None:
            entry.activity = payload.activity
        if "performer_type" in fields_set and payload.performer_type is not None:
            entry.performer_type = payload.performer_type
        if "notes" in fields_set:
            entry.notes = payload.notes
        entry.updated_at = utcnow()
        await entry.save()
        log.info("time_entry_updated", time_entry_id=entry_id, clinician_id=clinician_id)
        return entry

    async def delete(self, entry_id: str, clinician_id: str) -> None:
        entry = await self._get_owned(entry_id, clinician_id)
        await entry.delete()
        log.info("time_entry_deleted", time_entry_id=entry_id, clinician_id=clinician_id)

    async def _get_owned(self, entry_id: str, clinician_id: str) -> TimeEntry:
        try:
            object_id = PydanticObjectId(entry_id)
        except (InvalidId, TypeError) as exc:
            raise NotFoundError(f"time entry {entry_id} not found") from exc
        entry = await TimeEntry.get(object_id)
        if entry is None:
            raise NotFoundError(f"time entry {entry_id} not found")
        if entry.clinician_id != clinician_id:
            raise PermissionDeniedError("only the authoring clinician can modify a time entry")
        return entry
