"""
Fixed clinical alert rules.

Thresholds are in canonical units and are not user-configurable. Each rule
returns a ``RuleTrigger`` when its condition holds and ``None`` otherwise; the
engine owns persistence.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Sequence

from rpm_core.modules.alerts.inputs import (
    BP_SYSTOLIC_HIGH,
    BP_SYSTOLIC_LOW,
    LAB_CRITICAL,
    SPO2_LOW,
    SYMPTOM_WORSENING,
    WEIGHT_GAIN_48H,
    CriticalLabValue,
    LabCriticalInputs,
    ReadingRef,
    Spo2LowInputs,
    SymptomChange,
    SymptomWorseningInputs,
    SystolicHighInputs,
    SystolicLowInputs,
    WeightGainInputs,
)
from rpm_core.modules.alerts.models import AlertSeverity
from rpm_core.modules.checkins.models import SymptomCheckin
from rpm_core.modules.labs.schemas import LabFlag, LabResultImport
from rpm_core.modules.measurements.models import Measurement, MeasurementType
from rpm_core.shared.time import ensure_utc

WEIGHT_GAIN_THRESHOLD_KG = 2.0
# ~5 lb
WEIGHT_GAIN_CRITICAL_KG = 2.27
WEIGHT_GAIN_WINDOW = timedelta(hours=48)

SYSTOLIC_HIGH_MMHG = 180.0
SYSTOLIC_LOW_MMHG = 90.0
SPO2_LOW_PERCENT = 92.0


@dataclass(frozen=True)
class RuleTrigger:
    severity: AlertSeverity
    inputs: object
    summary: str


def _ref(measurement: Measurement) -> ReadingRef:
    return ReadingRef(
        measurement_id=str(measurement.id) if measurement.id is not None else None,
        value=measurement.value,
        timestamp=ensure_utc(measurement.timestamp),
    )


async def latest_reading(
    patient_id: str, measurement_type: MeasurementType
) -> Measurement | None:
    return await (
        Measurement.find(
            Measurement.patient_id == patient_id,
            Measurement.type == measurement_type,
        )
        .sort("-timestamp")
        .first_or_none()
    )


class MeasurementRule:
    rule_id: str
    name: str
    measurement_type: MeasurementType

    async def evaluate(self, patient_id: str) -> RuleTrigger | None:
        raise NotImplementedError


class WeightGainRule(MeasurementRule):
    """Weight up more than 2 kg across the 48 h ending at the latest weight."""

    rule_id = WEIGHT_GAIN_48H
    name = "Rapid Weight Gain"
    measurement_type = MeasurementType.WEIGHT

    def __init__(
        self,
        threshold_kg: float = WEIGHT_GAIN_THRESHOLD_KG,
        critical_kg: float = WEIGHT_GAIN_CRITICAL_KG,
        window: timedelta = WEIGHT_GAIN_WINDOW,
    ) -> None:
        self.threshold_kg = threshold_kg
        self.critical_kg = critical_kg
        self.window = window

    async def evaluate(self, patient_id: str) -> RuleTrigger | None:
        latest = await latest_reading(patient_id, self.measurement_type)
        if latest is None:
            return None

        window_end = ensure_utc(latest.timestamp)
        readings = await (
            Measurement.find(
                Measurement.patient_id == patient_id,
                Measurement.type == self.measurement_type,
                Measurement.timestamp >= window_end - self.window,
                Measurement.timestamp <= window_end,
            )
            .sort("timestamp")
            .to_list()
        )
        if len(readings) < 2:
            return None

        oldest, newest = readings[0], readings[-1]
        delta = round(newest.value - oldest.value, 2)
        if delta <= self.threshold_kg:
            return None

        severity = (
            AlertSeverity.CRITICAL if delta >= self.critical_kg else AlertSeverity.WARNING
        )
        hours = (ensure_utc(newest.timestamp) - ensure_utc(oldest.timestamp)).total_seconds() / 3600
        return RuleTrigger(
            severity=severity,
            inputs=WeightGainInputs(
                oldest=_ref(oldest),
                newest=_ref(newest),
                delta=delta,
                threshold_kg=self.threshold_kg,
                critical_threshold_kg=self.critical_kg,
                window_hours=int(self.window.total_seconds() // 3600),
                reading_count=len(readings),
            ),
            summary=(
                f"Weight up {delta:.2f} kg in {hours:.1f} h "
                f"({oldest.value:g} kg to {newest.value:g} kg)"
            ),
        )


class ThresholdRule(MeasurementRule):
    """Latest reading of one type compared against a fixed bound."""

    def __init__(
        self,
        rule_id: str,
        name: str,
        measurement_type: MeasurementType,
        threshold: float,
        above: bool,
        severity: AlertSeverity,
        inputs_model: type,
        unit: str,
    ) -> None:
        self.rule_id = rule_id
        self.name = name
        self.measurement_type = measurement_type
        self.threshold = threshold
        self.above = above
        self.severity = severity
        self.inputs_model = inputs_model
        self.unit = unit

    def breached(self, value: float) -> bool:
        # Bounds are inclusive in both directions
        return value >= self.threshold if self.above else value <= self.threshold

    async def evaluate(self, patient_id: str) -> RuleTrigger | None:
        latest = await latest_reading(patient_id, self.measurement_type)
        if latest is None or not self.breached(latest.value):
            return None
        comparator = ">=" if self.above else "<="
        return RuleTrigger(
            severity=self.severity,
            inputs=self.inputs_model(reading=_ref(latest), threshold=self.threshold),
            summary=f"{self.name}: {latest.value:g} {self.unit} ({comparator} {self.threshold:g})",
        )


class SymptomWorseningRule:
    rule_id = SYMPTOM_WORSENING
    name = "Worsening Symptoms"

    async def evaluate(self, checkin: SymptomCheckin) -> RuleTrigger | None:
        previous = await (
            SymptomCheckin.find(
                SymptomCheckin.patient_id == checkin.patient_id,
                SymptomCheckin.timestamp < ensure_utc(checkin.timestamp),
            )
            .sort("-timestamp")
            .first_or_none()
        )
        if previous is None:
            return None

        before = previous.symptoms.severities()
        changes = [
            SymptomChange(symptom=name, previous=before.get(name, 0), current=severity)
            for name, severity in checkin.symptoms.severities().items()
            if severity > before.get(name, 0)
        ]
        if not changes:
            return None

        described = ", ".join(f"{c.symptom} {c.previous} to {c.current}" for c in changes)
        return RuleTrigger(
            severity=AlertSeverity.WARNING,
            inputs=SymptomWorseningInputs(
                checkin_id=str(checkin.id) if checkin.id is not None else None,
                previous_checkin_id=str(previous.id) if previous.id is not None else None,
                changes=changes,
            ),
            summary=f"Symptoms worsened since last check-in: {described}",
        )


class LabCriticalRule:
    rule_id = LAB_CRITICAL
    name = "Critical Lab Result"

    async def evaluate(self, batch: LabResultImport) -> RuleTrigger | None:
        critical = [r for r in batch.results if r.flag == LabFlag.CRITICAL]
        if not critical:
            return None
        return RuleTrigger(
            severity=AlertSeverity.CRITICAL,
            inputs=LabCriticalInputs(
                report_id=batch.report_id,
                collected_at=batch.collected_at,
                results=[
                    CriticalLabValue(
                        analyte=r.analyte, value=r.value, unit=r.unit, flag=r.flag.value
                    )
                    for r in critical
                ],
            ),
            summary="Critical lab values: "
            + ", ".join(f"{r.analyte} {r.value:g}{' ' + r.unit if r.unit else ''}" for r in critical),
        )


MEASUREMENT_RULES: Sequence[MeasurementRule] = (
    WeightGainRule(),
    ThresholdRule(
        rule_id=BP_SYSTOLIC_HIGH,
        name="High Systolic Blood Pressure",
        measurement_type=MeasurementType.BP_SYSTOLIC,
        threshold=SYSTOLIC_HIGH_MMHG,
        above=True,
        severity=AlertSeverity.CRITICAL,
        inputs_model=SystolicHighInputs,
        unit="mmHg",
    ),
    ThresholdRule(
        rule_id=BP_SYSTOLIC_LOW,
        name="Low Systolic Blood Pressure",
        measurement_type=MeasurementType.BP_SYSTOLIC,
        threshold=SYSTOLIC_LOW_MMHG,
        above=False,
        severity=AlertSeverity.WARNING,
        inputs_model=SystolicLowInputs,
        unit="mmHg",
    ),
    ThresholdRule(
        rule_id=SPO2_LOW,
        name="Low Oxygen Saturation",
        measurement_type=MeasurementType.SPO2,
        threshold=SPO2_LOW_PERCENT,
        above=False,
        severity=AlertSeverity.CRITICAL,
        inputs_model=Spo2LowInputs,
        unit="%",
    ),
)
