import math
from datetime import date, datetime

from pydantic import Field, field_validator

from rpm_core.modules.measurements.models import MANUAL_SOURCE, Measurement, MeasurementType
from rpm_core.modules.measurements.trends import BloodPressureSeries, TrendLabel, TrendMeta
from rpm_core.shared.schemas import CamelModel, TimeWindow
from rpm_core.shared.time import parse_epoch_timestamp


def _require_finite(value: float) -> float:
    if not math.isfinite(value):
        raise ValueError("value must be a finite number")
    return value


class MeasurementCreate(CamelModel):
    """Normalized ingestion request from the API layer or a device sync job."""

    patient_id: str = Field(min_length=1)
    type: MeasurementType
    value: float
    unit: str = Field(min_length=1)
    timestamp: datetime | None = None
    source: str = Field(default=MANUAL_SOURCE, min_length=1)
    external_id: str | None = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def accept_epoch(cls, value: object) -> object:
        return parse_epoch_timestamp(value)

    @field_validator("value")
    @classmethod
    def finite(cls, value: float) -> float:
        return _require_finite(value)

    @field_validator("source")
    @classmethod
    def normalize_source(cls, value: str) -> str:
        return value.strip().lower()


class BloodPressureCreate(CamelModel):
    """Systolic and diastolic submitted together; stored as two rows."""

    patient_id: str = Field(min_length=1)
    systolic: float
    diastolic: float
    unit: str = "mmHg"
    timestamp: datetime | None = None
    source: str = Field(default=MANUAL_SOURCE, min_length=1)

    @field_validator("timestamp", mode="before")
    @classmethod
    def accept_epoch(cls, value: object) -> object:
        return parse_epoch_timestamp(value)

    @field_validator("systolic", "diastolic")
    @classmethod
    def finite(cls, value: float) -> float:
        return _require_finite(value)

    @field_validator("source")
    @classmethod
    def normalize_source(cls, value: str) -> str:
        return value.strip().lower()


class MeasurementOut(CamelModel):
    id: str
    patient_id: str
    type: MeasurementType
    value: float
    unit: str
    input_unit: str | None = None
    source: str
    external_id: str | None = None
    timestamp: datetime
    created_at: datetime

    @classmethod
    def from_document(cls, measurement: Measurement) -> "MeasurementOut":
        return cls(
            id=str(measurement.id),
            patient_id=measurement.patient_id,
            type=measurement.type,
            value=measurement.value,
            unit=measurement.unit,
            input_unit=measurement.input_unit,
            source=measurement.source,
            external_id=measurement.external_id,
            timestamp=measurement.timestamp,
            created_at=measurement.created_at,
        )


class IngestResponse(CamelModel):
    measurement_id: str
    is_duplicate: bool
    measurement: MeasurementOut


class BloodPressureIngestResponse(CamelModel):
    systolic: IngestResponse
    diastolic: IngestResponse
    is_duplicate: bool


class MeasurementListResponse(CamelModel):
    measurements: list[MeasurementOut]
    count: int
    has_more: bool = False


class VendorMeasure(CamelModel):
    """One vendor measure: real value is value * 10**unit."""

    type: int
    value: int | float
    unit: int = 0


class VendorMeasureGroup(CamelModel):
    grpid: str
    date: datetime
    measures: list[VendorMeasure] = Field(default_factory=list)

    @field_validator("grpid", mode="before")
    @classmethod
    def stringify_group_id(cls, value: object) -> object:
        return str(value) if isinstance(value, int) else value

    @field_validator("date", mode="before")
    @classmethod
    def accept_epoch(cls, value: object) -> object:
        return parse_epoch_timestamp(value)


class DeviceSyncRequest(CamelModel):
    patient_id: str = Field(min_length=1)
    groups: list[VendorMeasureGroup]


class DeviceSyncResponse(CamelModel):
    vendor: str
    created: int
    skipped: int
    errors: list[str]


class LatestReading(CamelModel):
    value: float
    timestamp: datetime
    source: str


class SeriesStats(CamelModel):
    min: float
    max: float
    avg: float
    count: int


class TrendMetaOut(CamelModel):
    method: str
    older_window_size: int
    newer_window_size: int
    older_avg: float
    newer_avg: float
    absolute_change: float
    threshold_used: float
    time_span_hours: float
    min_time_span_hours: float

    @classmethod
    def from_meta(cls, meta: TrendMeta) -> "TrendMetaOut":
        return cls(**meta.__dict__)


class MeasurementSummaryOut(CamelModel):
    type: MeasurementType
    unit: str
    display_unit: str
    latest: LatestReading | None = None
    stats: SeriesStats | None = None
    trend: TrendLabel
    trend_meta: TrendMetaOut | None = None
    range: TimeWindow


class BloodPressurePointOut(CamelModel):
    timestamp: datetime
    systolic: float
    diastolic: float
    source: str


class BloodPressureSeriesOut(CamelModel):
    unit: str = "mmHg"
    points: list[BloodPressurePointOut]
    paired_count: int
    unpaired_systolic_count: int
    unpaired_diastolic_count: int
    pairing_window_seconds: int
    range: TimeWindow

    @classmethod
    def from_series(
        cls, series: BloodPressureSeries, start: datetime, end: datetime
    ) -> "BloodPressureSeriesOut":
        return cls(
            points=[
                BloodPressurePointOut(
                    timestamp=p.timestamp,
                    systolic=p.systolic,
                    diastolic=p.diastolic,
                    source=p.source,
                )
                for p in series.points
            ],
            paired_count=series.paired_count,
            unpaired_systolic_count=series.unpaired_systolic_count,
            unpaired_diastolic_count=series.unpaired_diastolic_count,
            pairing_window_seconds=series.pairing_window_seconds,
            range=TimeWindow(start=start, end=end),
        )


class DailyAggregateOut(CamelModel):
    date: date
    min: float
    max: float
    avg: float
    count: int


class DailyAggregatesOut(CamelModel):
    type: MeasurementType
    unit: str
    display_unit: str
    timezone: str
    aggregates: list[DailyAggregateOut]
    total_days: int
    range: TimeWindow
