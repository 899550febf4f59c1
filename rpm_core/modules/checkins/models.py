from datetime import datetime, timezone

from beanie import Document
from pydantic import Field
from pymongo import IndexModel

from rpm_core.shared.schemas import CamelModel

# Symptoms whose severity is compared between consecutive check-ins
TRACKED_SYMPTOMS = ("edema", "fatigue", "shortness_of_breath", "nausea", "pain")


class SymptomDetail(CamelModel):
    """Severity on a 0 (none) to 3 (severe) scale."""

    severity: int = Field(ge=0, le=3)
    location: str | None = None
    at_rest: bool | None = None


class AppetiteDetail(CamelModel):
    level: int = Field(ge=0, le=3)


class SymptomSet(CamelModel):
    edema: SymptomDetail | None = None
    fatigue: SymptomDetail | None = None
    shortness_of_breath: SymptomDetail | None = None
    nausea: SymptomDetail | None = None
    pain: SymptomDetail | None = None
    appetite: AppetiteDetail | None = None

    def severities(self) -> dict[str, int]:
        """Reported tracked symptoms keyed by name; unreported ones are omitted."""
        result: dict[str, int] = {}
        for name in TRACKED_SYMPTOMS:
            detail = getattr(self, name)
            if detail is not None:
                result[name] = detail.severity
        return result


class SymptomCheckin(Document):
    """Patient-reported symptom check-in."""

    patient_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    symptoms: SymptomSet = Field(default_factory=SymptomSet)
    notes: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "symptom_checkins"
        indexes = [
            IndexModel([("patient_id", 1), ("timestamp", -1)]),
        ]
