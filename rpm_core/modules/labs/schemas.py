from datetime import datetime
from enum import Enum

from pydantic import Field

from rpm_core.shared.schemas import CamelModel


class LabFlag(str, Enum):
    HIGH = "H"
    LOW = "L"
    CRITICAL = "C"


class LabResultIn(CamelModel):
    analyte: str = Field(min_length=1)
    value: float
    unit: str | None = None
    reference_range: str | None = None
    flag: LabFlag | None = None


class LabResultImport(CamelModel):
    """A batch of results from one lab report, evaluated but not stored here."""

    patient_id: str = Field(min_length=1)
    report_id: str | None = None
    collected_at: datetime | None = None
    results: list[LabResultIn] = Field(min_length=1)


class LabEvaluationResponse(CamelModel):
    patient_id: str
    critical_count: int
    alert_ids: list[str]
