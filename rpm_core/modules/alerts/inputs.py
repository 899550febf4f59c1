"""
Explainability payloads stored on ``Alert.inputs``.

One variant per rule, tagged by ``rule_id``. Re-triggering an open alert
replaces the variant wholesale.
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import Discriminator, Tag

from rpm_core.shared.schemas import CamelModel

WEIGHT_GAIN_48H = "weight_gain_48h"
BP_SYSTOLIC_HIGH = "bp_systolic_high"
BP_SYSTOLIC_LOW = "bp_systolic_low"
SPO2_LOW = "spo2_low"
LAB_CRITICAL = "lab_critical"
SYMPTOM_WORSENING = "symptom_worsening"


class ReadingRef(CamelModel):
    measurement_id: str | None = None
    value: float
    timestamp: datetime


class WeightGainInputs(CamelModel):
    rule_id: Literal["weight_gain_48h"] = WEIGHT_GAIN_48H
    oldest: ReadingRef
    newest: ReadingRef
    delta: float
    threshold_kg: float
    critical_threshold_kg: float
    window_hours: int
    reading_count: int


class SystolicHighInputs(CamelModel):
    rule_id: Literal["bp_systolic_high"] = BP_SYSTOLIC_HIGH
    reading: ReadingRef
    threshold: float


class SystolicLowInputs(CamelModel):
    rule_id: Literal["bp_systolic_low"] = BP_SYSTOLIC_LOW
    reading: ReadingRef
    threshold: float


class Spo2LowInputs(CamelModel):
    rule_id: Literal["spo2_low"] = SPO2_LOW
    reading: ReadingRef
    threshold: float


class CriticalLabValue(CamelModel):
    analyte: str
    value: float
    unit: str | None = None
    flag: str


class LabCriticalInputs(CamelModel):
    rule_id: Literal["lab_critical"] = LAB_CRITICAL
    report_id: str | None = None
    collected_at: datetime | None = None
    results: list[CriticalLabValue]


class SymptomChange(CamelModel):
    symptom: str
    previous: int
    current: int


class SymptomWorseningInputs(CamelModel):
    rule_id: Literal["symptom_worsening"] = SYMPTOM_WORSENING
    checkin_id: str | None = None
    previous_checkin_id: str | None = None
    changes: list[SymptomChange]


def _rule_id_of(value: Any) -> str | None:
    # Stored documents and API payloads may carry either casing
    if isinstance(value, dict):
        return value.get("rule_id", value.get("ruleId"))
    return getattr(value, "rule_id", None)


AlertInputs = Annotated[
    Union[
        Annotated[WeightGainInputs, Tag(WEIGHT_GAIN_48H)],
        Annotated[SystolicHighInputs, Tag(BP_SYSTOLIC_HIGH)],
        Annotated[SystolicLowInputs, Tag(BP_SYSTOLIC_LOW)],
        Annotated[Spo2LowInputs, Tag(SPO2_LOW)],
        Annotated[LabCriticalInputs, Tag(LAB_CRITICAL)],
        Annotated[SymptomWorseningInputs, Tag(SYMPTOM_WORSENING)],
    ],
    Discriminator(_rule_id_of),
]
