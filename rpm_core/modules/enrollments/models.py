from datetime import datetime, timezone
from enum import Enum

from beanie import Document
from pydantic import Field
from pymongo import IndexModel


class EnrollmentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    ENDED = "ENDED"


class BillingProgram(str, Enum):
    RPM_CCM = "RPM_CCM"
    RPM_PCM = "RPM_PCM"
    RPM_ONLY = "RPM_ONLY"


class Enrollment(Document):
    """
    Patient-clinician-clinic link carrying billing configuration.

    Managed by the enrollment workflow outside this service; read-only here.
    """

    patient_id: str
    clinician_id: str
    clinic_id: str
    status: EnrollmentStatus = EnrollmentStatus.ACTIVE
    billing_program: BillingProgram = BillingProgram.RPM_CCM
    timezone: str = "UTC"
    is_primary: bool = True
    initial_setup_billed_at: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "enrollments"
        indexes = [
            IndexModel([("patient_id", 1), ("clinician_id", 1)], unique=True),
            IndexModel([("clinic_id", 1), ("status", 1)]),
            IndexModel([("clinician_id", 1), ("status", 1)]),
        ]
