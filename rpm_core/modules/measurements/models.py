from datetime import datetime, timezone
from enum import Enum

from beanie import Document
from pydantic import Field
from pymongo import IndexModel

MANUAL_SOURCE = "manual"


class MeasurementType(str, Enum):
    """Supported physiological measurement types."""

    WEIGHT = "weight"
    BP_SYSTOLIC = "bp_systolic"
    BP_DIASTOLIC = "bp_diastolic"
    SPO2 = "spo2"
    HEART_RATE = "heart_rate"
    FAT_FREE_MASS = "fat_free_mass"
    FAT_RATIO = "fat_ratio"
    FAT_MASS = "fat_mass"
    MUSCLE_MASS = "muscle_mass"
    HYDRATION = "hydration"
    BONE_MASS = "bone_mass"
    PULSE_WAVE_VELOCITY = "pulse_wave_velocity"


class Measurement(Document):
    """
    One physiological reading, stored in the canonical unit for its type.

    Append-only: rows are inserted once at ingestion and never updated or deleted.
    """

    patient_id: str
    type: MeasurementType
    value: float
    unit: str
    input_unit: str | None = None
    timestamp: datetime
    source: str = MANUAL_SOURCE
    external_id: str | None = None
    # Set for manual rows only; unique index backstops concurrent double submits
    dedup_key: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_manual(self) -> bool:
        return self.source == MANUAL_SOURCE

    class Settings:
        name = "measurements"
        indexes = [
            IndexModel(
                [("patient_id", 1), ("type", 1), ("timestamp", -1)],
            ),
            IndexModel(
                [("source", 1), ("external_id", 1)],
                unique=True,
                partialFilterExpression={"external_id": {"$type": "string"}},
                name="uniq_source_external_id",
            ),
            IndexModel(
                [("dedup_key", 1)],
                unique=True,
                partialFilterExpression={"dedup_key": {"$type": "string"}},
                name="uniq_manual_dedup_key",
            ),
            IndexModel([("patient_id", 1), ("source", 1), ("timestamp", 1)]),
        ]
