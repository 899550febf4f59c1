from datetime import timedelta

import pytest

from rpm_core.modules.alerts import engine as engine_module
from rpm_core.modules.alerts.engine import AlertRuleEngine, upsert_open_alert
from rpm_core.modules.alerts.inputs import (
    BP_SYSTOLIC_HIGH,
    BP_SYSTOLIC_LOW,
    LAB_CRITICAL,
    SPO2_LOW,
    SYMPTOM_WORSENING,
    WEIGHT_GAIN_48H,
    ReadingRef,
    SystolicLowInputs,
    WeightGainInputs,
)
from rpm_core.modules.alerts.models import AlertSeverity, AlertStatus
from rpm_core.modules.alerts.rules import MEASUREMENT_RULES, MeasurementRule, RuleTrigger
from rpm_core.modules.checkins.models import SymptomCheckin, SymptomDetail, SymptomSet
from rpm_core.modules.labs.schemas import LabFlag, LabResultImport, LabResultIn
from rpm_core.modules.measurements.models import Measurement, MeasurementType
from rpm_core.shared.time import utcnow


async def _reading(measurement_type: MeasurementType, value: float, timestamp) -> Measurement:
    measurement = Measurement(
        patient_id="patient-1",
        type=measurement_type,
        value=value,
        unit="kg",
        timestamp=timestamp,
    )
    await measurement.insert()
    return measurement


class _RecordingNotifier:
    def __init__(self) -> None:
        self.calls: list[tuple[str, int]] = []

    async def notify(self, alert, escalation_level: int) -> None:
        self.calls.append((alert.rule_id, escalation_level))


class _BrokenRule(MeasurementRule):
    rule_id = "broken"
    name = "Broken"
    measurement_type = MeasurementType.BP_SYSTOLIC

    async def evaluate(self, patient_id: str) -> RuleTrigger | None:
        raise RuntimeError("boom")


@pytest.mark.asyncio
class TestWeightGain:
    async def test_gain_over_critical_threshold_in_36_hours(self, db) -> None:
        engine = AlertRuleEngine()
        t0 = utcnow() - timedelta(hours=40)
        await _reading(MeasurementType.WEIGHT, 85.2, t0)
        latest = await _reading(MeasurementType.WEIGHT, 87.5, t0 + timedelta(hours=36))

        alerts = await engine.evaluate_measurement(latest)

        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.rule_id == WEIGHT_GAIN_48H
        assert alert.severity == AlertSeverity.CRITICAL
        assert isinstance(alert.inputs, WeightGainInputs)
        assert alert.inputs.delta == pytest.approx(2.3)
        assert alert.inputs.oldest.value == 85.2
        assert alert.inputs.newest.value == 87.5
        assert alert.inputs.reading_count == 2

    async def test_gain_between_thresholds_is_warning(self, db) -> None:
        engine = AlertRuleEngine()
        t0 = utcnow() - timedelta(hours=30)
        await _reading(MeasurementType.WEIGHT, 80.0, t0)
        latest = await _reading(MeasurementType.WEIGHT, 82.1, t0 + timedelta(hours=24))

        alerts = await engine.evaluate_measurement(latest)

        assert alerts[0].severity == AlertSeverity.WARNING

    async def test_gain_of_exactly_two_kg_does_not_fire(self, db) -> None:
        engine = AlertRuleEngine()
        t0 = utcnow() - timedelta(hours=30)
        await _reading(MeasurementType.WEIGHT, 80.0, t0)
        latest = await _reading(MeasurementType.WEIGHT, 82.0, t0 + timedelta(hours=24))

        assert await engine.evaluate_measurement(latest) == []
        assert db["alerts"] == []

    async def test_readings_outside_48_hours_are_ignored(self, db) -> None:
        engine = AlertRuleEngine()
        t0 = utcnow() - timedelta(hours=80)
        await _reading(MeasurementType.WEIGHT, 80.0, t0)
        latest = await _reading(MeasurementType.WEIGHT, 83.0, t0 + timedelta(hours=60))

        assert await engine.evaluate_measurement(latest) == []


@pytest.mark.asyncio
class TestThresholdRules:
    @pytest.mark.parametrize(
        ("measurement_type", "value", "rule_id", "severity"),
        [
            (MeasurementType.BP_SYSTOLIC, 180, BP_SYSTOLIC_HIGH, AlertSeverity.CRITICAL),
            (MeasurementType.BP_SYSTOLIC, 90, BP_SYSTOLIC_LOW, AlertSeverity.WARNING),
            (MeasurementType.SPO2, 92, SPO2_LOW, AlertSeverity.CRITICAL),
        ],
    )
    async def test_bounds_are_inclusive(
        self, db, measurement_type, value, rule_id, severity
    ) -> None:
        reading = await _reading(measurement_type, value, utcnow() - timedelta(minutes=5))

        alerts = await AlertRuleEngine().evaluate_measurement(reading)

        assert [(a.rule_id, a.severity) for a in alerts] == [(rule_id, severity)]
        assert alerts[0].inputs.threshold == float(value)
        assert alerts[0].inputs.reading.measurement_id == str(reading.id)

    async def test_normal_reading_fires_nothing(self, db) -> None:
        reading = await _reading(MeasurementType.BP_SYSTOLIC, 128, utcnow())

        assert await AlertRuleEngine().evaluate_measurement(reading) == []

    async def test_only_the_latest_reading_counts(self, db) -> None:
        now = utcnow()
        older = await _reading(MeasurementType.SPO2, 88, now - timedelta(hours=2))
        await _reading(MeasurementType.SPO2, 97, now - timedelta(hours=1))

        # Back-filled low reading arrives after a normal one
        assert await AlertRuleEngine().evaluate_measurement(older) == []


@pytest.mark.asyncio
class TestSingleOpenAlert:
    async def test_retrigger_updates_the_open_alert(self, db) -> None:
        notifier = _RecordingNotifier()
        engine = AlertRuleEngine(notifier=notifier)
        now = utcnow()
        first = await _reading(MeasurementType.BP_SYSTOLIC, 185, now - timedelta(hours=2))
        [created] = await engine.evaluate_measurement(first)
        first_triggered = created.triggered_at

        second = await _reading(MeasurementType.BP_SYSTOLIC, 195, now - timedelta(hours=1))
        [updated] = await engine.evaluate_measurement(second)

        assert updated.id == created.id
        assert len(db["alerts"]) == 1
        assert updated.triggered_at >= first_triggered
        assert updated.inputs.reading.value == 195
        # Only creation notifies; updates are silent
        assert notifier.calls == [(BP_SYSTOLIC_HIGH, 0)]
        assert updated.last_notified_at is not None

    async def test_closed_alert_allows_a_new_open_one(self, db) -> None:
        engine = AlertRuleEngine()
        reading = await _reading(MeasurementType.SPO2, 90, utcnow() - timedelta(minutes=30))
        [first] = await engine.evaluate_measurement(reading)
        first.status = AlertStatus.ACKNOWLEDGED
        await first.save()

        [second] = await engine.evaluate_measurement(reading)

        assert second.id != first.id
        assert second.status == AlertStatus.OPEN
        assert len(db["alerts"]) == 2

    async def test_upsert_merges_after_losing_insert_race(self, db, monkeypatch) -> None:
        trigger = RuleTrigger(
            severity=AlertSeverity.WARNING,
            inputs=SystolicLowInputs(
                reading=ReadingRef(value=85, timestamp=utcnow()), threshold=90
            ),
            summary="low",
        )
        existing = (await upsert_open_alert("patient-1", BP_SYSTOLIC_LOW, "Low", trigger)).alert

        calls = {"count": 0}
        original_merge = engine_module._merge_into_open

        async def _miss_first(*args, **kwargs):
            calls["count"] += 1
            if calls["count"] == 1:
                return None
            return await original_merge(*args, **kwargs)

        monkeypatch.setattr(engine_module, "_merge_into_open", _miss_first)

        result = await upsert_open_alert("patient-1", BP_SYSTOLIC_LOW, "Low", trigger)

        assert result.created is False
        assert result.alert.id == existing.id
        assert len(db["alerts"]) == 1
        assert calls["count"] == 2

    async def test_retrigger_leaves_a_closed_alert_closed(self, db) -> None:
        trigger = RuleTrigger(
            severity=AlertSeverity.WARNING,
            inputs=SystolicLowInputs(
                reading=ReadingRef(value=85, timestamp=utcnow()), threshold=90
            ),
            summary="low",
        )
        first = (await upsert_open_alert("patient-1", BP_SYSTOLIC_LOW, "Low", trigger)).alert
        first.status = AlertStatus.DISMISSED
        await first.save()

        result = await upsert_open_alert("patient-1", BP_SYSTOLIC_LOW, "Low", trigger)

        assert result.created is True
        assert first.status == AlertStatus.DISMISSED
        assert [a.status for a in db["alerts"]] == [AlertStatus.DISMISSED, AlertStatus.OPEN]


@pytest.mark.asyncio
async def test_failing_rule_does_not_block_others(db) -> None:
    engine = AlertRuleEngine(measurement_rules=[_BrokenRule(), *MEASUREMENT_RULES])
    reading = await _reading(MeasurementType.BP_SYSTOLIC, 200, utcnow())

    alerts = await engine.evaluate_measurement(reading)

    assert [a.rule_id for a in alerts] == [BP_SYSTOLIC_HIGH]


@pytest.mark.asyncio
async def test_notifier_failure_keeps_the_alert(db) -> None:
    class _Failing:
        async def notify(self, alert, escalation_level: int) -> None:
            raise RuntimeError("channel down")

    engine = AlertRuleEngine(notifier=_Failing())
    reading = await _reading(MeasurementType.SPO2, 85, utcnow())

    [alert] = await engine.evaluate_measurement(reading)

    assert alert.status == AlertStatus.OPEN
    assert alert.last_notified_at is None
    assert len(db["alerts"]) == 1


@pytest.mark.asyncio
class TestSymptomWorsening:
    async def _checkin(self, minutes_ago: int, **severities: int) -> SymptomCheckin:
        checkin = SymptomCheckin(
            patient_id="patient-1",
            timestamp=utcnow() - timedelta(minutes=minutes_ago),
            symptoms=SymptomSet(
                **{name: SymptomDetail(severity=level) for name, level in severities.items()}
            ),
        )
        await checkin.insert()
        return checkin

    async def test_increase_in_any_symptom_fires(self, db) -> None:
        await self._checkin(60 * 24, edema=1, fatigue=2)
        current = await self._checkin(5, edema=2, fatigue=1)

        [alert] = await AlertRuleEngine().evaluate_checkin(current)

        assert alert.rule_id == SYMPTOM_WORSENING
        assert alert.severity == AlertSeverity.WARNING
        assert [(c.symptom, c.previous, c.current) for c in alert.inputs.changes] == [
            ("edema", 1, 2)
        ]

    async def test_newly_reported_symptom_counts_from_zero(self, db) -> None:
        await self._checkin(60, fatigue=1)
        current = await self._checkin(5, fatigue=1, nausea=1)

        [alert] = await AlertRuleEngine().evaluate_checkin(current)

        assert alert.inputs.changes[0].symptom == "nausea"
        assert alert.inputs.changes[0].previous == 0

    async def test_first_checkin_never_fires(self, db) -> None:
        current = await self._checkin(5, edema=3)

        assert await AlertRuleEngine().evaluate_checkin(current) == []


@pytest.mark.asyncio
async def test_critical_lab_values_fire_one_alert(db) -> None:
    batch = LabResultImport(
        patient_id="patient-1",
        report_id="rpt-1",
        results=[
            LabResultIn(analyte="potassium", value=6.8, unit="mmol/L", flag=LabFlag.CRITICAL),
            LabResultIn(analyte="creatinine", value=3.1, unit="mg/dL", flag=LabFlag.HIGH),
        ],
    )

    [alert] = await AlertRuleEngine().evaluate_lab_results(batch)

    assert alert.rule_id == LAB_CRITICAL
    assert alert.severity == AlertSeverity.CRITICAL
    assert [r.analyte for r in alert.inputs.results] == ["potassium"]
    assert "potassium 6.8 mmol/L" in alert.summary_text


@pytest.mark.asyncio
async def test_lab_batch_without_critical_values_is_quiet(db) -> None:
    batch = LabResultImport(
        patient_id="patient-1",
        results=[LabResultIn(analyte="hemoglobin", value=9.5, flag=LabFlag.LOW)],
    )

    assert await AlertRuleEngine().evaluate_lab_results(batch) == []
