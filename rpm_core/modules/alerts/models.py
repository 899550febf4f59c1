from datetime import datetime, timezone
from enum import Enum

from beanie import Document
from pydantic import Field
from pymongo import IndexModel

from rpm_core.modules.alerts.inputs import AlertInputs

MAX_ESCALATION_LEVEL = 2


class AlertSeverity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class AlertStatus(str, Enum):
    OPEN = "OPEN"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    DISMISSED = "DISMISSED"


class Alert(Document):
    """
    A clinical condition signal.

    At most one OPEN alert exists per (patient_id, rule_id); an ongoing
    condition keeps updating that row instead of creating new ones. Escalation
    fields only matter while the alert is OPEN.
    """

    patient_id: str
    rule_id: str
    rule_name: str
    severity: AlertSeverity
    status: AlertStatus = AlertStatus.OPEN
    inputs: AlertInputs
    summary_text: str | None = None
    triggered_at: datetime
    escalation_level: int = Field(default=0, ge=0, le=MAX_ESCALATION_LEVEL)
    escalated_at: datetime | None = None
    last_notified_at: datetime | None = None
    acknowledged_by: str | None = None
    acknowledged_at: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_open(self) -> bool:
        return self.status == AlertStatus.OPEN

    class Settings:
        name = "alerts"
        indexes = [
            IndexModel(
                [("patient_id", 1), ("rule_id", 1)],
                unique=True,
                partialFilterExpression={"status": AlertStatus.OPEN.value},
                name="uniq_open_alert_per_rule",
            ),
            IndexModel([("status", 1), ("escalation_level", 1), ("triggered_at", 1)]),
            IndexModel([("patient_id", 1), ("triggered_at", -1)]),
        ]
