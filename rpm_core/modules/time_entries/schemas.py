from datetime import datetime

from pydantic import Field

from rpm_core.modules.time_entries.models import PerformerType, TimeEntry, TimeEntryActivity
from rpm_core.shared.schemas import CamelModel


class TimeEntryCreate(CamelModel):
    patient_id: str = Field(min_length=1)
    clinic_id: str | None = Field(
        None, description="Defaults to the clinic of the clinician's enrollment with the patient"
    )
    entry_date: datetime
    duration_minutes: int
    activity: TimeEntryActivity
    performer_type: PerformerType = PerformerType.CLINICAL_STAFF
    notes: str | None = Field(default=None, max_length=2000)


class TimeEntryUpdate(CamelModel):
    entry_date: datetime | None = None
    duration_minutes: int | None = None
    activity: TimeEntryActivity | None = None
    performer_type: PerformerType | None = None
    notes: str | None = Field(default=None, max_length=2000)


class TimeEntryOut(CamelModel):
    id: str
    patient_id: str
    clinician_id: str
    clinic_id: str
    entry_date: datetime
    duration_minutes: int
    activity: TimeEntryActivity
    performer_type: PerformerType
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_document(cls, entry: TimeEntry) -> "TimeEntryOut":
        return cls(
            id=str(entry.id),
            patient_id=entry.patient_id,
            clinician_id=entry.clinician_id,
            clinic_id=entry.clinic_id,
            entry_date=entry.entry_date,
            duration_minutes=entry.duration_minutes,
            activity=entry.activity,
            performer_type=entry.performer_type,
            notes=entry.notes,
            created_at=entry.created_at,
            updated_at=entry.updated_at,
        )


class TimeEntryListResponse(CamelModel):
    entries: list[TimeEntryOut]
    count: int
    total_minutes: int
