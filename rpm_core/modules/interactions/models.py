from datetime import datetime, timezone
from enum import Enum
from typing import Any

from beanie import Document
from pydantic import Field
from pymongo import IndexModel


class InteractionType(str, Enum):
    PATIENT_MEASUREMENT = "PATIENT_MEASUREMENT"
    PATIENT_CHECKIN = "PATIENT_CHECKIN"
    CLINICIAN_ALERT_ACK = "CLINICIAN_ALERT_ACK"


class InteractionLog(Document):
    """Audit trail of patient and clinician touchpoints."""

    patient_id: str
    clinician_id: str | None = None
    interaction_type: InteractionType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = Field(default_factory=dict)

    class Settings:
        name = "interaction_logs"
        indexes = [
            IndexModel([("patient_id", 1), ("timestamp", -1)]),
            IndexModel([("interaction_type", 1), ("timestamp", -1)]),
        ]
