from datetime import timedelta

import structlog
from beanie import PydanticObjectId, UpdateResponse
from beanie.operators import In, Set
from bson.errors import InvalidId

from rpm_core.core.config import settings
from rpm_core.modules.alerts.engine import AlertRuleEngine
from rpm_core.modules.alerts.escalation import EscalationScheduler
from rpm_core.modules.alerts.models import Alert, AlertStatus
from rpm_core.modules.alerts.notifier import StreamNotifier, build_notifier
from rpm_core.modules.enrollments.service import active_patient_ids_for_clinician
from rpm_core.modules.interactions.models import InteractionType
from rpm_core.modules.interactions.service import log_interaction
from rpm_core.shared.exceptions import AlertStateError, NotFoundError
from rpm_core.shared.time import utcnow

log = structlog.get_logger()


def _parse_alert_id(alert_id: str) -> PydanticObjectId:
    try:
        return PydanticObjectId(alert_id)
    except (InvalidId, TypeError) as exc:
        raise NotFoundError(f"alert {alert_id} not found") from exc


class AlertService:
    """Alert reads and the clinician-facing acknowledge/dismiss transitions."""

    async def get(self, alert_id: str) -> Alert:
        alert = await Alert.get(_parse_alert_id(alert_id))
        if alert is None:
            raise NotFoundError(f"alert {alert_id} not found")
        return alert

    async def list_for_patient(
        self,
        patient_id: str,
        status: AlertStatus | None = None,
        limit: int = 50,
        skip: int = 0,
    ) -> list[Alert]:
        query = Alert.find(Alert.patient_id == patient_id)
        if status:
            query = query.find(Alert.status == status)
        return await query.sort("-triggered_at").skip(skip).limit(limit).to_list()

    async def list_for_clinician(
        self,
        clinician_id: str,
        status: AlertStatus | None = None,
        limit: int = 50,
    ) -> list[Alert]:
        """Alerts across the clinician's actively enrolled patients, CRITICAL first."""
        patient_ids = await active_patient_ids_for_clinician(clinician_id)
        if not patient_ids:
            return []
        query = Alert.find(In(Alert.patient_id, patient_ids))
        if status:
            query = query.find(Alert.status == status)
        alerts = await query.to_list()
        rank = {"CRITICAL": 0, "WARNING": 1, "INFO": 2}
        alerts.sort(key=lambda a: a.triggered_at, reverse=True)
        alerts.sort(key=lambda a: rank[a.severity.value])
        return alerts[:limit]

    async def acknowledge(self, alert_id: str, clinician_id: str, note: str | None = None) -> Alert:
        return await self._close(alert_id, clinician_id, AlertStatus.ACKNOWLEDGED, note)

    async def dismiss(self, alert_id: str, clinician_id: str, note: str | None = None) -> Alert:
        return await self._close(alert_id, clinician_id, AlertStatus.DISMISSED, note)

    async def _close(
        self,
        alert_id: str,
        clinician_id: str,
        target: AlertStatus,
        note: str | None,
    ) -> Alert:
        current = await self.get(alert_id)
        if not current.is_open:
            raise AlertStateError(
                f"alert {alert_id} is {current.status.value}; only OPEN alerts can be "
                f"{target.value.lower()}"
            )

        now = utcnow()
        # Matches only while the alert is still OPEN
        alert = await Alert.find_one(
            Alert.id == current.id, Alert.status == AlertStatus.OPEN
        ).update(
            Set(
                {
                    Alert.status: target,
                    Alert.acknowledged_by: clinician_id,
                    Alert.acknowledged_at: now,
                    Alert.updated_at: now,
                }
            ),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
        if alert is None:
            raise AlertStateError(f"alert {alert_id} was closed by another request")

        await log_interaction(
            patient_id=alert.patient_id,
            clinician_id=clinician_id,
            interaction_type=InteractionType.CLINICIAN_ALERT_ACK,
            metadata={
                "alert_id": str(alert.id),
                "rule_id": alert.rule_id,
                "action": target.value,
                "escalation_level": alert.escalation_level,
                "note": note,
            },
            timestamp=now,
        )
        log.info(
            "alert_closed",
            alert_id=str(alert.id),
            patient_id=alert.patient_id,
            status=target.value,
            clinician_id=clinician_id,
            escalation_level=alert.escalation_level,
        )
        return alert


alert_stream = StreamNotifier()
alert_notifier = build_notifier(alert_stream)
alert_engine = AlertRuleEngine(notifier=alert_notifier)
alert_service = AlertService()


def build_escalation_scheduler() -> EscalationScheduler:
    return EscalationScheduler(
        notifier=alert_notifier,
        escalate_after=timedelta(hours=settings.ESCALATION_AFTER_HOURS),
        max_level=settings.MAX_ESCALATION_LEVEL,
    )
