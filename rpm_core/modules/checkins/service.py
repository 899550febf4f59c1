from dataclasses import dataclass, field

import structlog

from rpm_core.modules.alerts.engine import AlertRuleEngine
from rpm_core.modules.alerts.models import Alert
from rpm_core.modules.alerts.service import alert_engine
from rpm_core.modules.checkins.models import SymptomCheckin
from rpm_core.modules.checkins.schemas import CheckinCreate
from rpm_core.modules.interactions.models import InteractionType
from rpm_core.modules.interactions.service import log_interaction
from rpm_core.shared.exceptions import ValidationError
from rpm_core.shared.time import ensure_utc, utcnow

log = structlog.get_logger()


@dataclass(frozen=True)
class CheckinResult:
    checkin: SymptomCheckin
    alerts: list[Alert] = field(default_factory=list)


class CheckinService:
    def __init__(self, engine: AlertRuleEngine | None = None) -> None:
        self._engine = engine

    async def create_checkin(self, request: CheckinCreate) -> CheckinResult:
        """Store a symptom check-in, then compare it against the previous one."""
        now = utcnow()
        timestamp = ensure_utc(request.timestamp or now)
        if timestamp > now:
            raise ValidationError("check-in timestamp cannot be in the future")

        checkin = SymptomCheckin(
            patient_id=request.patient_id,
            timestamp=timestamp,
            symptoms=request.symptoms,
            notes=request.notes,
            created_at=now,
        )
        await checkin.insert()
        await log_interaction(
            patient_id=checkin.patient_id,
            interaction_type=InteractionType.PATIENT_CHECKIN,
            metadata={"checkin_id": str(checkin.id)},
            timestamp=now,
        )
        log.info("checkin_recorded", checkin_id=str(checkin.id), patient_id=checkin.patient_id)

        alerts: list[Alert] = []
        if self._engine is not None:
            try:
                alerts = await self._engine.evaluate_checkin(checkin)
            except Exception as exc:
                log.error(
                    "alert_evaluation_failed",
                    checkin_id=str(checkin.id),
                    patient_id=checkin.patient_id,
                    error=str(exc),
                    exc_info=exc,
                )
        return CheckinResult(checkin=checkin, alerts=alerts)

    async def list_checkins(
        self, patient_id: str, limit: int = 50, skip: int = 0
    ) -> list[SymptomCheckin]:
        return await (
            SymptomCheckin.find(SymptomCheckin.patient_id == patient_id)
            .sort("-timestamp")
            .skip(skip)
            .limit(limit)
            .to_list()
        )


checkin_service = CheckinService(engine=alert_engine)
