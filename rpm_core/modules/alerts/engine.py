from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Sequence

import structlog
from beanie import UpdateResponse
from beanie.operators import Set
from pymongo.errors import DuplicateKeyError

from rpm_core.modules.alerts.models import Alert, AlertStatus
from rpm_core.modules.alerts.notifier import AlertNotifier
from rpm_core.modules.alerts.rules import (
    MEASUREMENT_RULES,
    LabCriticalRule,
    MeasurementRule,
    RuleTrigger,
    SymptomWorseningRule,
)
from rpm_core.modules.checkins.models import SymptomCheckin
from rpm_core.modules.labs.schemas import LabResultImport
from rpm_core.modules.measurements.models import Measurement
from rpm_core.shared.exceptions import RuleEvaluationError
from rpm_core.shared.time import utcnow

log = structlog.get_logger()


@dataclass(frozen=True)
class UpsertResult:
    alert: Alert
    created: bool


async def _merge_into_open(
    patient_id: str, rule_id: str, trigger: RuleTrigger, now: datetime
) -> Alert | None:
    # Re-trigger: replace the explainability payload, keep status and escalation
    return await Alert.find_one(
        Alert.patient_id == patient_id,
        Alert.rule_id == rule_id,
        Alert.status == AlertStatus.OPEN,
    ).update(
        Set(
            {
                Alert.inputs: trigger.inputs,
                Alert.severity: trigger.severity,
                Alert.summary_text: trigger.summary,
                Alert.triggered_at: now,
                Alert.updated_at: now,
            }
        ),
        response_type=UpdateResponse.NEW_DOCUMENT,
    )


async def upsert_open_alert(
    patient_id: str,
    rule_id: str,
    rule_name: str,
    trigger: RuleTrigger,
    now: datetime | None = None,
) -> UpsertResult:
    """
    Create the OPEN alert for (patient_id, rule_id) or update the existing one
    in place. The update only touches payload fields and only matches while
    the alert is OPEN, so it never reopens an alert closed concurrently. A
    concurrent insert that loses the unique-index race is folded into the
    update path.
    """
    now = now or utcnow()
    merged = await _merge_into_open(patient_id, rule_id, trigger, now)
    if merged is not None:
        return UpsertResult(merged, created=False)

    alert = Alert(
        patient_id=patient_id,
        rule_id=rule_id,
        rule_name=rule_name,
        severity=trigger.severity,
        status=AlertStatus.OPEN,
        inputs=trigger.inputs,
        summary_text=trigger.summary,
        triggered_at=now,
        escalation_level=0,
        created_at=now,
        updated_at=now,
    )
    try:
        await alert.insert()
    except DuplicateKeyError:
        merged = await _merge_into_open(patient_id, rule_id, trigger, now)
        if merged is None:
            raise
        return UpsertResult(merged, created=False)
    return UpsertResult(alert, created=True)


class AlertRuleEngine:
    """
    Evaluates the fixed rule set and maintains one OPEN alert per patient/rule.

    Rules are isolated from each other: a failing rule is logged and the rest
    still run. Callers run the engine after the triggering data is committed
    and must not let its failures affect that data.
    """

    def __init__(
        self,
        notifier: AlertNotifier | None = None,
        measurement_rules: Sequence[MeasurementRule] = MEASUREMENT_RULES,
        symptom_rule: SymptomWorseningRule | None = None,
        lab_rule: LabCriticalRule | None = None,
    ) -> None:
        self._notifier = notifier
        self._measurement_rules = list(measurement_rules)
        self._symptom_rule = symptom_rule or SymptomWorseningRule()
        self._lab_rule = lab_rule or LabCriticalRule()

    async def evaluate_measurement(self, measurement: Measurement) -> list[Alert]:
        patient_id = measurement.patient_id
        applicable = [
            r for r in self._measurement_rules if r.measurement_type == measurement.type
        ]
        return await self._run(
            patient_id,
            [(r.rule_id, r.name, lambda r=r: r.evaluate(patient_id)) for r in applicable],
        )

    async def evaluate_checkin(self, checkin: SymptomCheckin) -> list[Alert]:
        rule = self._symptom_rule
        return await self._run(
            checkin.patient_id,
            [(rule.rule_id, rule.name, lambda: rule.evaluate(checkin))],
        )

    async def evaluate_lab_results(self, batch: LabResultImport) -> list[Alert]:
        rule = self._lab_rule
        return await self._run(
            batch.patient_id,
            [(rule.rule_id, rule.name, lambda: rule.evaluate(batch))],
        )

    async def _run(
        self,
        patient_id: str,
        evaluations: list[tuple[str, str, Callable[[], Awaitable[RuleTrigger | None]]]],
    ) -> list[Alert]:
        fired: list[Alert] = []
        for rule_id, rule_name, evaluate in evaluations:
            try:
                trigger = await evaluate()
                if trigger is None:
                    log.info("rule_evaluated", patient_id=patient_id, rule_id=rule_id, fired=False)
                    continue
                result = await upsert_open_alert(patient_id, rule_id, rule_name, trigger)
            except Exception as exc:
                error = RuleEvaluationError(rule_id, patient_id, exc)
                log.error(
                    "rule_evaluation_failed",
                    patient_id=patient_id,
                    rule_id=rule_id,
                    error=str(error),
                    exc_info=exc,
                )
                continue

            log.info(
                "rule_evaluated",
                patient_id=patient_id,
                rule_id=rule_id,
                fired=True,
                alert_id=str(result.alert.id),
                created=result.created,
                severity=result.alert.severity.value,
            )
            if result.created:
                await self._notify_new(result.alert)
            fired.append(result.alert)
        return fired

    async def _notify_new(self, alert: Alert) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier.notify(alert, 0)
        except Exception as exc:
            log.warning(
                "alert_notification_failed",
                alert_id=str(alert.id),
                patient_id=alert.patient_id,
                escalation_level=0,
                error=str(exc),
            )
            return
        now = utcnow()
        alert.last_notified_at = now
        try:
            await Alert.find_one(Alert.id == alert.id).update(
                Set({Alert.last_notified_at: now})
            )
        except Exception as exc:
            log.warning("alert_notified_stamp_failed", alert_id=str(alert.id), error=str(exc))
