"""HTTP and SSE endpoints for alert consumers and clinician actions."""

import asyncio
import json

import structlog
from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import StreamingResponse

from rpm_core.modules.alerts.models import AlertStatus
from rpm_core.modules.alerts.schemas import AlertActionRequest, AlertListResponse, AlertOut
from rpm_core.modules.alerts.service import alert_service, alert_stream
from rpm_core.shared import deps
from rpm_core.shared.exceptions import DomainError

router = APIRouter()
log = structlog.get_logger()

KEEPALIVE_SECONDS = 30.0


@router.get("/patients/{patient_id}/alerts", response_model=AlertListResponse)
async def list_patient_alerts(
    patient_id: str,
    status_filter: AlertStatus | None = Query(default=None, alias="status"),
    limit: int = 50,
    skip: int = 0,
) -> AlertListResponse:
    alerts = await alert_service.list_for_patient(
        patient_id, status=status_filter, limit=min(limit, 500), skip=skip
    )
    return AlertListResponse(
        alerts=[AlertOut.from_document(a) for a in alerts], count=len(alerts)
    )


@router.get("/alerts", response_model=AlertListResponse)
async def list_my_alerts(
    status_filter: AlertStatus | None = Query(default=None, alias="status"),
    limit: int = 50,
    clinician_id: str = Depends(deps.get_clinician_id),
) -> AlertListResponse:
    """Alert inbox across the calling clinician's enrolled patients."""
    alerts = await alert_service.list_for_clinician(
        clinician_id, status=status_filter, limit=min(limit, 500)
    )
    return AlertListResponse(
        alerts=[AlertOut.from_document(a) for a in alerts], count=len(alerts)
    )


@router.get("/alerts/stream")
async def stream_alerts(request: Request, patient_id: str | None = None) -> StreamingResponse:
    """
    Server-Sent Events stream of alert creations and escalations.

    Omit `patient_id` to receive events for every patient.
    """

    async def event_generator():
        queue: asyncio.Queue = asyncio.Queue(maxsize=100)
        alert_stream.subscribe(queue, patient_id=patient_id)
        log.info("alert_stream_connected", patient_id=patient_id or "*")
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                    yield f"data: {json.dumps(event)}\n\n"
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
        finally:
            alert_stream.unsubscribe(queue)
            log.info("alert_stream_closed", patient_id=patient_id or "*")

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/alerts/{alert_id}", response_model=AlertOut)
async def get_alert(alert_id: str) -> AlertOut:
    try:
        alert = await alert_service.get(alert_id)
    except DomainError as exc:
        raise deps.http_error(exc) from exc
    return AlertOut.from_document(alert)


@router.post(
    "/alerts/{alert_id}/acknowledge",
    response_model=AlertOut,
    status_code=status.HTTP_200_OK,
)
async def acknowledge_alert(
    alert_id: str,
    body: AlertActionRequest | None = None,
    clinician_id: str = Depends(deps.get_clinician_id),
) -> AlertOut:
    try:
        alert = await alert_service.acknowledge(
            alert_id, clinician_id, note=body.note if body else None
        )
    except DomainError as exc:
        raise deps.http_error(exc) from exc
    return AlertOut.from_document(alert)


@router.post(
    "/alerts/{alert_id}/dismiss",
    response_model=AlertOut,
    status_code=status.HTTP_200_OK,
)
async def dismiss_alert(
    alert_id: str,
    body: AlertActionRequest | None = None,
    clinician_id: str = Depends(deps.get_clinician_id),
) -> AlertOut:
    try:
        alert = await alert_service.dismiss(
            alert_id, clinician_id, note=body.note if body else None
        )
    except DomainError as exc:
        raise deps.http_error(exc) from exc
    return AlertOut.from_document(alert)
