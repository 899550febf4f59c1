from datetime import datetime
from typing import Any

from rpm_core.modules.interactions.models import InteractionLog, InteractionType
from rpm_core.shared.schemas import CamelModel


class InteractionOut(CamelModel):
    id: str
    patient_id: str
    clinician_id: str | None = None
    interaction_type: InteractionType
    timestamp: datetime
    metadata: dict[str, Any]

    @classmethod
    def from_document(cls, entry: InteractionLog) -> "InteractionOut":
        return cls(
            id=str(entry.id),
            patient_id=entry.patient_id,
            clinician_id=entry.clinician_id,
            interaction_type=entry.interaction_type,
            timestamp=entry.timestamp,
            metadata=entry.metadata,
        )


class InteractionListResponse(CamelModel):
    interactions: list[InteractionOut]
    count: int
