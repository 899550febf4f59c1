from datetime import datetime, timezone
from enum import Enum

from beanie import Document
from pydantic import Field
from pymongo import IndexModel


class TimeEntryActivity(str, Enum):
    PATIENT_REVIEW = "PATIENT_REVIEW"
    CARE_PLAN_UPDATE = "CARE_PLAN_UPDATE"
    PHONE_CALL = "PHONE_CALL"
    COORDINATION = "COORDINATION"
    DOCUMENTATION = "DOCUMENTATION"
    OTHER = "OTHER"


class PerformerType(str, Enum):
    CLINICAL_STAFF = "CLINICAL_STAFF"
    PHYSICIAN_QHP = "PHYSICIAN_QHP"


class TimeEntry(Document):
    """Clinician-attested billable minutes for one patient on one day."""

    patient_id: str
    clinician_id: str
    clinic_id: str
    entry_date: datetime
    duration_minutes: int
    activity: TimeEntryActivity
    performer_type: PerformerType = PerformerType.CLINICAL_STAFF
    notes: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "time_entries"
        indexes = [
            IndexModel([("patient_id", 1), ("entry_date", -1)]),
            IndexModel([("clinician_id", 1), ("entry_date", -1)]),
        ]
