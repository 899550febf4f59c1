from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response, status

from rpm_core.modules.time_entries.schemas import (
    TimeEntryCreate,
    TimeEntryListResponse,
    TimeEntryOut,
    TimeEntryUpdate,
)
from rpm_core.modules.time_entries.service import TimeEntryService
from rpm_core.shared import deps
from rpm_core.shared.exceptions import DomainError

router = APIRouter()


@router.post(
    "/time-entries",
    response_model=TimeEntryOut,
    status_code=status.HTTP_201_CREATED,
    summary="Record clinician time for a patient",
)
async def create_time_entry(
    payload: TimeEntryCreate,
    clinician_id: str = Depends(deps.get_clinician_id),
    service: TimeEntryService = Depends(TimeEntryService),
) -> TimeEntryOut:
    try:
        entry = await service.create(payload, clinician_id)
    except DomainError as exc:
        raise deps.http_error(exc) from exc
    return TimeEntryOut.from_document(entry)


@router.get("/patients/{patient_id}/time-entries", response_model=TimeEntryListResponse)
async def list_time_entries(
    patient_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    skip: int = Query(default=0, ge=0),
    service: TimeEntryService = Depends(TimeEntryService),
) -> TimeEntryListResponse:
    entries = await service.list_for_patient(
        patient_id, start=start, end=end, limit=limit, skip=skip
    )
    return TimeEntryListResponse(
        entries=[TimeEntryOut.from_document(e) for e in entries],
        count=len(entries),
        total_minutes=sum(e.duration_minutes for e in entries),
    )


@router.patch("/time-entries/{entry_id}", response_model=TimeEntryOut)
async def update_time_entry(
    entry_id: str,
    payload: TimeEntryUpdate,
    clinician_id: str = Depends(deps.get_clinician_id),
    service: TimeEntryService = Depends(TimeEntryService),
) -> TimeEntryOut:
    try:
        entry = await service.update(entry_id, payload, clinician_id)
    except DomainError as exc:
        raise deps.http_error(exc) from exc
    return TimeEntryOut.from_document(entry)


@router.delete("/time-entries/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_time_entry(
    entry_id: str,
    clinician_id: str = Depends(deps.get_clinician_id),
    service: TimeEntryService = Depends(TimeEntryService),
) -> Response:
    try:
        await service.delete(entry_id, clinician_id)
    except DomainError as exc:
        raise deps.http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
