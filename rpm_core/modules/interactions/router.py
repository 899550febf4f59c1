from fastapi import APIRouter, Query

from rpm_core.modules.interactions.models import InteractionType
from rpm_core.modules.interactions.schemas import InteractionListResponse, InteractionOut
from rpm_core.modules.interactions.service import list_interactions

router = APIRouter()


@router.get(
    "/patients/{patient_id}/interactions",
    response_model=InteractionListResponse,
    summary="Audit trail of measurements, check-ins and alert actions, newest first",
)
async def list_patient_interactions(
    patient_id: str,
    interaction_type: InteractionType | None = Query(default=None, alias="type"),
    limit: int = Query(default=100, ge=1, le=500),
) -> InteractionListResponse:
    rows = await list_interactions(patient_id, interaction_type=interaction_type, limit=limit)
    return InteractionListResponse(
        interactions=[InteractionOut.from_document(i) for i in rows], count=len(rows)
    )
