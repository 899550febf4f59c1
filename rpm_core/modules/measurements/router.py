"""HTTP endpoints for measurement ingestion and retrieval."""

from datetime import datetime

from fastapi import APIRouter, Query, Response, status

from rpm_core.modules.measurements.devices import device_sync_service
from rpm_core.modules.measurements.models import MeasurementType
from rpm_core.modules.measurements.schemas import (
    BloodPressureCreate,
    BloodPressureIngestResponse,
    BloodPressureSeriesOut,
    DailyAggregatesOut,
    DeviceSyncRequest,
    DeviceSyncResponse,
    IngestResponse,
    MeasurementCreate,
    MeasurementListResponse,
    MeasurementOut,
    MeasurementSummaryOut,
)
from rpm_core.modules.measurements.service import IngestResult, measurement_service
from rpm_core.shared import deps
from rpm_core.shared.exceptions import DomainError

router = APIRouter()


def _ingest_response(result: IngestResult) -> IngestResponse:
    return IngestResponse(
        measurement_id=str(result.measurement.id),
        is_duplicate=result.is_duplicate,
        measurement=MeasurementOut.from_document(result.measurement),
    )


@router.post(
    "/measurements",
    response_model=IngestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Ingest a single measurement",
)
async def ingest_measurement(body: MeasurementCreate, response: Response) -> IngestResponse:
    """Returns 201 for a new reading and 200 with the existing id for a duplicate."""
    try:
        result = await measurement_service.ingest(body)
    except DomainError as exc:
        raise deps.http_error(exc) from exc
    if result.is_duplicate:
        response.status_code = status.HTTP_200_OK
    return _ingest_response(result)


@router.post(
    "/measurements/blood-pressure",
    response_model=BloodPressureIngestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Ingest a systolic/diastolic pair",
)
async def ingest_blood_pressure(
    body: BloodPressureCreate, response: Response
) -> BloodPressureIngestResponse:
    try:
        systolic, diastolic = await measurement_service.ingest_blood_pressure(body)
    except DomainError as exc:
        raise deps.http_error(exc) from exc
    is_duplicate = systolic.is_duplicate and diastolic.is_duplicate
    if is_duplicate:
        response.status_code = status.HTTP_200_OK
    return BloodPressureIngestResponse(
        systolic=_ingest_response(systolic),
        diastolic=_ingest_response(diastolic),
        is_duplicate=is_duplicate,
    )


@router.post(
    "/measurements/devices/{vendor}/sync",
    response_model=DeviceSyncResponse,
    summary="Ingest measure groups fetched from a device vendor",
)
async def sync_device_measures(vendor: str, body: DeviceSyncRequest) -> DeviceSyncResponse:
    try:
        result = await device_sync_service.ingest_groups(body.patient_id, vendor, body.groups)
    except DomainError as exc:
        raise deps.http_error(exc) from exc
    return DeviceSyncResponse(
        vendor=vendor.strip().lower(),
        created=result.created,
        skipped=result.skipped,
        errors=result.errors,
    )


@router.get("/patients/{patient_id}/measurements", response_model=MeasurementListResponse)
async def list_measurements(
    patient_id: str,
    type: MeasurementType | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    skip: int = Query(default=0, ge=0),
) -> MeasurementListResponse:
    rows = await measurement_service.list_measurements(
        patient_id, type=type, start=start, end=end, limit=limit + 1, skip=skip
    )
    return MeasurementListResponse(
        measurements=[MeasurementOut.from_document(m) for m in rows[:limit]],
        count=min(len(rows), limit),
        has_more=len(rows) > limit,
    )


@router.get(
    "/patients/{patient_id}/measurements/summary",
    response_model=MeasurementSummaryOut,
    summary="Latest value, statistics and trend for one measurement type",
)
async def measurement_summary(
    patient_id: str,
    type: MeasurementType,
    start: datetime | None = None,
    end: datetime | None = None,
    display_unit: str | None = Query(default=None, alias="displayUnit"),
) -> MeasurementSummaryOut:
    try:
        return await measurement_service.get_summary(
            patient_id, type, start=start, end=end, display_unit=display_unit
        )
    except DomainError as exc:
        raise deps.http_error(exc) from exc


@router.get(
    "/patients/{patient_id}/measurements/blood-pressure",
    response_model=BloodPressureSeriesOut,
    summary="Systolic/diastolic readings paired into one series",
)
async def blood_pressure_series(
    patient_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
) -> BloodPressureSeriesOut:
    try:
        series, window_start, window_end = await measurement_service.get_blood_pressure_series(
            patient_id, start=start, end=end
        )
    except DomainError as exc:
        raise deps.http_error(exc) from exc
    return BloodPressureSeriesOut.from_series(series, window_start, window_end)


@router.get(
    "/patients/{patient_id}/measurements/daily",
    response_model=DailyAggregatesOut,
    summary="Per-day min/max/avg/count in the patient's timezone",
)
async def daily_aggregates(
    patient_id: str,
    type: MeasurementType,
    start: datetime | None = None,
    end: datetime | None = None,
    display_unit: str | None = Query(default=None, alias="displayUnit"),
    timezone: str | None = None,
) -> DailyAggregatesOut:
    """Defaults to the last 90 days in the patient's enrollment timezone."""
    try:
        return await measurement_service.get_daily_aggregates(
            patient_id, type, start=start, end=end, display_unit=display_unit, tz=timezone
        )
    except DomainError as exc:
        raise deps.http_error(exc) from exc
