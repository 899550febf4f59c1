"""Domain error taxonomy shared by services and routers.

Duplicate submissions are not errors: ingestion reports them through
``IngestResult.is_duplicate``.
"""


class DomainError(Exception):
    """Base class for errors raised by the domain services."""


class ValidationError(DomainError):
    """Input rejected at the boundary; nothing was persisted."""


class UnsupportedUnit(ValidationError):
    def __init__(self, measurement_type: str, unit: str, accepted: list[str]) -> None:
        self.measurement_type = measurement_type
        self.unit = unit
        self.accepted = accepted
        super().__init__(
            f"unit '{unit}' is not supported for {measurement_type}; "
            f"accepted units: {', '.join(accepted)}"
        )


class NotFoundError(DomainError):
    pass


class PermissionDeniedError(DomainError):
    pass


class AlertStateError(DomainError):
    """Requested transition is not allowed from the alert's current status."""


class RuleEvaluationError(DomainError):
    def __init__(self, rule_id: str, patient_id: str, cause: Exception) -> None:
        self.rule_id = rule_id
        self.patient_id = patient_id
        self.cause = cause
        super().__init__(f"rule {rule_id} failed for patient {patient_id}: {cause}")


class NotificationDispatchError(DomainError):
    pass
