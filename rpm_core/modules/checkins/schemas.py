from datetime import datetime

from pydantic import Field, field_validator

from rpm_core.modules.alerts.schemas import AlertOut
from rpm_core.modules.checkins.models import SymptomCheckin, SymptomSet
from rpm_core.shared.schemas import CamelModel
from rpm_core.shared.time import parse_epoch_timestamp


class CheckinCreate(CamelModel):
    patient_id: str = Field(min_length=1)
    timestamp: datetime | None = None
    symptoms: SymptomSet = Field(default_factory=SymptomSet)
    notes: str | None = Field(default=None, max_length=2000)

    @field_validator("timestamp", mode="before")
    @classmethod
    def accept_epoch(cls, value: object) -> object:
        return parse_epoch_timestamp(value)


class CheckinOut(CamelModel):
    id: str
    patient_id: str
    timestamp: datetime
    symptoms: SymptomSet
    notes: str | None = None
    created_at: datetime

    @classmethod
    def from_document(cls, checkin: SymptomCheckin) -> "CheckinOut":
        return cls(
            id=str(checkin.id),
            patient_id=checkin.patient_id,
            timestamp=checkin.timestamp,
            symptoms=checkin.symptoms,
            notes=checkin.notes,
            created_at=checkin.created_at,
        )


class CheckinCreateResponse(CamelModel):
    checkin: CheckinOut
    alerts: list[AlertOut]


class CheckinListResponse(CamelModel):
    checkins: list[CheckinOut]
    count: int
