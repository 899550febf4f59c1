"""
Periodic re-notification of unacknowledged OPEN alerts.

Each alert moves level 0 -> 1 -> 2 and stops there. The sweep holds no state
between runs: everything it needs is read from the alerts collection, and
leaving OPEN removes an alert from selection.
"""

from datetime import datetime, timedelta

import structlog
from beanie import UpdateResponse
from beanie.operators import Set

from rpm_core.modules.alerts.models import MAX_ESCALATION_LEVEL, Alert, AlertStatus
from rpm_core.modules.alerts.notifier import AlertNotifier
from rpm_core.shared.time import ensure_utc, utcnow

log = structlog.get_logger()

DEFAULT_ESCALATE_AFTER = timedelta(hours=4)


class EscalationScheduler:
    def __init__(
        self,
        notifier: AlertNotifier,
        escalate_after: timedelta = DEFAULT_ESCALATE_AFTER,
        max_level: int = MAX_ESCALATION_LEVEL,
    ) -> None:
        self._notifier = notifier
        self._escalate_after = escalate_after
        self._max_level = min(max_level, MAX_ESCALATION_LEVEL)

    async def due_alerts(self, now: datetime) -> list[Alert]:
        cutoff = ensure_utc(now) - self._escalate_after
        first = await Alert.find(
            Alert.status == AlertStatus.OPEN,
            Alert.escalation_level == 0,
            Alert.triggered_at < cutoff,
        ).to_list()
        later = await Alert.find(
            Alert.status == AlertStatus.OPEN,
            Alert.escalation_level == 1,
            Alert.escalated_at < cutoff,
        ).to_list()
        due = [a for a in first + later if a.escalation_level < self._max_level]
        due.sort(key=lambda a: ensure_utc(a.triggered_at))
        return due

    async def _advance(self, alert: Alert, now: datetime) -> Alert | None:
        """
        Move one level up, but only if the alert is still OPEN at the level it
        was selected at. Returns None when a clinician or another sweep got
        there first.
        """
        return await Alert.find_one(
            Alert.id == alert.id,
            Alert.status == AlertStatus.OPEN,
            Alert.escalation_level == alert.escalation_level,
        ).update(
            Set(
                {
                    Alert.escalation_level: min(alert.escalation_level + 1, self._max_level),
                    Alert.escalated_at: now,
                    Alert.last_notified_at: now,
                    Alert.updated_at: now,
                }
            ),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )

    async def run_once(self, now: datetime | None = None) -> list[Alert]:
        """Escalate every due alert by one level. Returns the alerts advanced."""
        now = ensure_utc(now or utcnow())
        escalated: list[Alert] = []
        for due in await self.due_alerts(now):
            try:
                alert = await self._advance(due, now)
            except Exception as exc:
                log.error(
                    "alert_escalation_save_failed",
                    alert_id=str(due.id),
                    patient_id=due.patient_id,
                    error=str(exc),
                )
                continue
            if alert is None:
                log.info(
                    "alert_escalation_skipped",
                    alert_id=str(due.id),
                    patient_id=due.patient_id,
                    escalation_level=due.escalation_level,
                )
                continue

            escalated.append(alert)
            log.info(
                "alert_escalated",
                alert_id=str(alert.id),
                patient_id=alert.patient_id,
                rule_id=alert.rule_id,
                escalation_level=alert.escalation_level,
            )
            # Level and timestamps stay advanced even when delivery fails
            try:
                await self._notifier.notify(alert, alert.escalation_level)
            except Exception as exc:
                log.warning(
                    "alert_notification_failed",
                    alert_id=str(alert.id),
                    patient_id=alert.patient_id,
                    escalation_level=alert.escalation_level,
                    error=str(exc),
                )

        log.info("escalation_sweep_finished", escalated=len(escalated))
        return escalated
