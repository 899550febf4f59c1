from datetime import datetime, timezone
from typing import Any

import structlog
from pymongo.asynchronous.client_session import AsyncClientSession

from rpm_core.modules.interactions.models import InteractionLog, InteractionType

log = structlog.get_logger()


async def log_interaction(
    patient_id: str,
    interaction_type: InteractionType,
    clinician_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    timestamp: datetime | None = None,
    session: AsyncClientSession | None = None,
) -> InteractionLog:
    """
    Record an interaction. Pass `session` to make the write part of the caller's
    transaction (measurement ingestion relies on this).
    """
    entry = InteractionLog(
        patient_id=patient_id,
        clinician_id=clinician_id,
        interaction_type=interaction_type,
        timestamp=timestamp or datetime.now(timezone.utc),
        metadata=metadata or {},
    )
    await entry.insert(session=session)
    log.debug(
        "interaction_logged",
        patient_id=patient_id,
        interaction_type=interaction_type.value,
    )
    return entry


async def list_interactions(
    patient_id: str,
    interaction_type: InteractionType | None = None,
    limit: int = 100,
) -> list[InteractionLog]:
    query = InteractionLog.find(InteractionLog.patient_id == patient_id)
    if interaction_type:
        query = query.find(InteractionLog.interaction_type == interaction_type)
    return await query.sort("-timestamp").limit(limit).to_list()
