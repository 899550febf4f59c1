from fastapi import APIRouter, Query, status

from rpm_core.modules.alerts.schemas import AlertOut
from rpm_core.modules.checkins.schemas import (
    CheckinCreate,
    CheckinCreateResponse,
    CheckinListResponse,
    CheckinOut,
)
from rpm_core.modules.checkins.service import checkin_service
from rpm_core.shared import deps
from rpm_core.shared.exceptions import DomainError

router = APIRouter()


@router.post(
    "/checkins",
    response_model=CheckinCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a symptom check-in",
)
async def create_checkin(body: CheckinCreate) -> CheckinCreateResponse:
    try:
        result = await checkin_service.create_checkin(body)
    except DomainError as exc:
        raise deps.http_error(exc) from exc
    return CheckinCreateResponse(
        checkin=CheckinOut.from_document(result.checkin),
        alerts=[AlertOut.from_document(a) for a in result.alerts],
    )


@router.get("/patients/{patient_id}/checkins", response_model=CheckinListResponse)
async def list_checkins(
    patient_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    skip: int = Query(default=0, ge=0),
) -> CheckinListResponse:
    rows = await checkin_service.list_checkins(patient_id, limit=limit, skip=skip)
    return CheckinListResponse(
        checkins=[CheckinOut.from_document(c) for c in rows], count=len(rows)
    )
