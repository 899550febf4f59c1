from datetime import datetime

from pydantic import Field

from rpm_core.modules.alerts.inputs import AlertInputs
from rpm_core.modules.alerts.models import Alert, AlertSeverity, AlertStatus
from rpm_core.shared.schemas import CamelModel


class AlertOut(CamelModel):
    id: str
    patient_id: str
    rule_id: str
    rule_name: str
    severity: AlertSeverity
    status: AlertStatus
    inputs: AlertInputs
    summary_text: str | None = None
    triggered_at: datetime
    escalation_level: int
    escalated_at: datetime | None = None
    last_notified_at: datetime | None = None
    acknowledged_by: str | None = None
    acknowledged_at: datetime | None = None

    @classmethod
    def from_document(cls, alert: Alert) -> "AlertOut":
        return cls(
            id=str(alert.id),
            patient_id=alert.patient_id,
            rule_id=alert.rule_id,
            rule_name=alert.rule_name,
            severity=alert.severity,
            status=alert.status,
            inputs=alert.inputs,
            summary_text=alert.summary_text,
            triggered_at=alert.triggered_at,
            escalation_level=alert.escalation_level,
            escalated_at=alert.escalated_at,
            last_notified_at=alert.last_notified_at,
            acknowledged_by=alert.acknowledged_by,
            acknowledged_at=alert.acknowledged_at,
        )


class AlertListResponse(CamelModel):
    alerts: list[AlertOut]
    count: int


class AlertEvent(CamelModel):
    """Outbound alert event for stream subscribers and webhooks."""

    event: str
    escalation_level: int
    alert: AlertOut
    timestamp: datetime


class AlertActionRequest(CamelModel):
    note: str | None = Field(None, description="Optional note recorded on the interaction log")
