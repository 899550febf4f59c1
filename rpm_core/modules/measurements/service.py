import statistics
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

import structlog
from pymongo.asynchronous.client_session import AsyncClientSession
from pymongo.errors import DuplicateKeyError

from rpm_core.core.config import settings
from rpm_core.core.db import run_in_transaction
from rpm_core.modules.alerts.engine import AlertRuleEngine
from rpm_core.modules.alerts.models import Alert
from rpm_core.modules.alerts.service import alert_engine
from rpm_core.modules.enrollments.service import get_billing_enrollment
from rpm_core.modules.interactions.models import InteractionType
from rpm_core.modules.interactions.service import log_interaction
from rpm_core.modules.measurements.dedup import DeduplicationGuard, manual_dedup_key
from rpm_core.modules.measurements.models import MANUAL_SOURCE, Measurement, MeasurementType
from rpm_core.modules.measurements.schemas import (
    BloodPressureCreate,
    DailyAggregateOut,
    DailyAggregatesOut,
    LatestReading,
    MeasurementCreate,
    MeasurementSummaryOut,
    SeriesStats,
    TrendMetaOut,
)
from rpm_core.modules.measurements.trends import (
    BloodPressureSeries,
    SeriesPoint,
    analyze_trend,
    pair_blood_pressure,
)
from rpm_core.modules.measurements.units import (
    CANONICAL_UNITS,
    check_plausible,
    display_unit_for,
    from_canonical,
    to_canonical,
)
from rpm_core.shared.exceptions import ValidationError
from rpm_core.shared.schemas import TimeWindow
from rpm_core.shared.time import ensure_utc, resolve_timezone, utcnow

log = structlog.get_logger()

DEFAULT_LOOKBACK = timedelta(days=30)
DAILY_LOOKBACK = timedelta(days=90)
DAILY_MAX_RANGE = timedelta(days=365)
# Device clocks drift; readings slightly ahead of server time are accepted
FUTURE_SKEW = timedelta(minutes=5)
SERIES_LIMIT = 2000


@dataclass(frozen=True)
class IngestResult:
    measurement: Measurement
    is_duplicate: bool
    alerts: list[Alert] = field(default_factory=list)


class MeasurementService:
    """
    Ingestion pipeline and read models for measurements.

    Ingestion is strictly sequential: unit conversion, duplicate check, then the
    measurement and its interaction log in one transaction, then alert
    evaluation as a separate step that can never undo the write.
    """

    def __init__(
        self,
        engine: AlertRuleEngine | None = None,
        guard: DeduplicationGuard | None = None,
    ) -> None:
        self._engine = engine
        self._guard = guard or DeduplicationGuard()

    async def ingest(self, request: MeasurementCreate) -> IngestResult:
        return await self._ingest_candidate(self._build_candidate(request))

    async def _ingest_candidate(self, candidate: Measurement) -> IngestResult:
        dedup = await self._guard.check(candidate)
        if dedup.is_duplicate and dedup.existing is not None:
            return IngestResult(measurement=dedup.existing, is_duplicate=True)

        async def _write(session: AsyncClientSession | None) -> Measurement:
            return await self._persist(candidate, session)

        try:
            await run_in_transaction(_write)
        except DuplicateKeyError:
            resolved = await self._guard.resolve_conflict(candidate)
            if not resolved.is_duplicate or resolved.existing is None:
                raise
            return IngestResult(measurement=resolved.existing, is_duplicate=True)

        log.info(
            "measurement_ingested",
            measurement_id=str(candidate.id),
            patient_id=candidate.patient_id,
            type=candidate.type.value,
            source=candidate.source,
        )
        alerts = await self._evaluate_alerts(candidate)
        return IngestResult(measurement=candidate, is_duplicate=False, alerts=alerts)

    async def ingest_blood_pressure(
        self, request: BloodPressureCreate
    ) -> tuple[IngestResult, IngestResult]:
        """Both halves are validated before either row is written."""
        timestamp = request.timestamp or utcnow()
        systolic = self._build_candidate(
            MeasurementCreate(
                patient_id=request.patient_id,
                type=MeasurementType.BP_SYSTOLIC,
                value=request.systolic,
                unit=request.unit,
                timestamp=timestamp,
                source=request.source,
            )
        )
        diastolic = self._build_candidate(
            MeasurementCreate(
                patient_id=request.patient_id,
                type=MeasurementType.BP_DIASTOLIC,
                value=request.diastolic,
                unit=request.unit,
                timestamp=timestamp,
                source=request.source,
            )
        )
        return (
            await self._ingest_candidate(systolic),
            await self._ingest_candidate(diastolic),
        )

    def _build_candidate(self, request: MeasurementCreate) -> Measurement:
        canonical = to_canonical(request.type, request.value, request.unit)
        check_plausible(request.type, canonical.value)

        now = utcnow()
        timestamp = ensure_utc(request.timestamp or now)
        if timestamp > now + FUTURE_SKEW:
            raise ValidationError("measurement timestamp cannot be in the future")

        source = request.source or MANUAL_SOURCE
        dedup_key = None
        if source == MANUAL_SOURCE:
            dedup_key = manual_dedup_key(
                request.patient_id, request.type, timestamp, canonical.value
            )
        return Measurement(
            patient_id=request.patient_id,
            type=request.type,
            value=canonical.value,
            unit=canonical.unit,
            input_unit=canonical.input_unit,
            timestamp=timestamp,
            source=source,
            external_id=request.external_id or None,
            dedup_key=dedup_key,
            created_at=now,
        )

    async def _persist(
        self, measurement: Measurement, session: AsyncClientSession | None
    ) -> Measurement:
        await measurement.insert(session=session)
        await log_interaction(
            patient_id=measurement.patient_id,
            interaction_type=InteractionType.PATIENT_MEASUREMENT,
            metadata={
                "measurement_id": str(measurement.id),
                "type": measurement.type.value,
                "source": measurement.source,
            },
            timestamp=measurement.created_at,
            session=session,
        )
        return measurement

    async def _evaluate_alerts(self, measurement: Measurement) -> list[Alert]:
        if self._engine is None:
            return []
        try:
            return await self._engine.evaluate_measurement(measurement)
        except Exception as exc:
            # The measurement is already committed; alerting never rolls it back
            log.error(
                "alert_evaluation_failed",
                measurement_id=str(measurement.id),
                patient_id=measurement.patient_id,
                error=str(exc),
                exc_info=exc,
            )
            return []

    async def list_measurements(
        self,
        patient_id: str,
        type: MeasurementType | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
        skip: int = 0,
    ) -> list[Measurement]:
        """Return measurements newest-first with optional type and date filtering."""
        query = Measurement.find(Measurement.patient_id == patient_id)
        if type:
            query = query.find(Measurement.type == type)
        if start:
            query = query.find(Measurement.timestamp >= ensure_utc(start))
        if end:
            query = query.find(Measurement.timestamp <= ensure_utc(end))
        return await query.sort("-timestamp").skip(skip).limit(limit).to_list()

    async def _series(
        self,
        patient_id: str,
        type: MeasurementType,
        start: datetime,
        end: datetime,
    ) -> list[Measurement]:
        return await (
            Measurement.find(
                Measurement.patient_id == patient_id,
                Measurement.type == type,
                Measurement.timestamp >= start,
                Measurement.timestamp <= end,
            )
            .sort("timestamp")
            .limit(SERIES_LIMIT)
            .to_list()
        )

    def _window(
        self, start: datetime | None, end: datetime | None
    ) -> tuple[datetime, datetime]:
        end = ensure_utc(end) if end else utcnow()
        start = ensure_utc(start) if start else end - DEFAULT_LOOKBACK
        if start > end:
            raise ValidationError("start must not be after end")
        return start, end

    async def get_summary(
        self,
        patient_id: str,
        type: MeasurementType,
        start: datetime | None = None,
        end: datetime | None = None,
        display_unit: str | None = None,
    ) -> MeasurementSummaryOut:
        """Latest value, min/max/avg and trend label over a window (30 days by default)."""
        start, end = self._window(start, end)
        rows = await self._series(patient_id, type, start, end)
        canonical_unit = CANONICAL_UNITS[type]
        shown_unit = display_unit_for(type, display_unit)
        window = TimeWindow(start=start, end=end)

        if not rows:
            return MeasurementSummaryOut(
                type=type,
                unit=canonical_unit,
                display_unit=shown_unit,
                trend=analyze_trend(type, []).label,
                range=window,
            )

        # Trend runs on canonical values so thresholds stay in canonical units
        trend = analyze_trend(
            type, [SeriesPoint(r.timestamp, r.value, r.source) for r in rows]
        )
        values = [from_canonical(type, r.value, display_unit) for r in rows]
        latest = rows[-1]
        return MeasurementSummaryOut(
            type=type,
            unit=canonical_unit,
            display_unit=shown_unit,
            latest=LatestReading(
                value=values[-1],
                timestamp=ensure_utc(latest.timestamp),
                source=latest.source,
            ),
            stats=SeriesStats(
                min=round(min(values), 2),
                max=round(max(values), 2),
                avg=round(statistics.fmean(values), 2),
                count=len(values),
            ),
            trend=trend.label,
            trend_meta=TrendMetaOut.from_meta(trend.meta) if trend.meta else None,
            range=window,
        )

    async def get_blood_pressure_series(
        self,
        patient_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> tuple[BloodPressureSeries, datetime, datetime]:
        start, end = self._window(start, end)
        systolic = await self._series(patient_id, MeasurementType.BP_SYSTOLIC, start, end)
        diastolic = await self._series(patient_id, MeasurementType.BP_DIASTOLIC, start, end)
        series = pair_blood_pressure(
            [SeriesPoint(r.timestamp, r.value, r.source) for r in systolic],
            [SeriesPoint(r.timestamp, r.value, r.source) for r in diastolic],
        )
        return series, start, end

    async def get_daily_aggregates(
        self,
        patient_id: str,
        type: MeasurementType,
        start: datetime | None = None,
        end: datetime | None = None,
        display_unit: str | None = None,
        tz: str | None = None,
    ) -> DailyAggregatesOut:
        """
        Per-day min/max/avg/count in display units, bucketed by the patient's
        local calendar day. Defaults to the last 90 days and never spans more
        than a year.
        """
        if tz is None:
            enrollment = await get_billing_enrollment(patient_id)
            tz = enrollment.timezone if enrollment else settings.DEFAULT_PATIENT_TIMEZONE
        zone = resolve_timezone(tz)
        end = ensure_utc(end) if end else utcnow()
        start = ensure_utc(start) if start else end - DAILY_LOOKBACK
        if start > end:
            raise ValidationError("start must not be after end")
        start = max(start, end - DAILY_MAX_RANGE)

        rows = await self._series(patient_id, type, start, end)
        buckets: dict[date, list[float]] = {}
        for row in rows:
            day = ensure_utc(row.timestamp).astimezone(zone).date()
            buckets.setdefault(day, []).append(from_canonical(type, row.value, display_unit))

        aggregates = [
            DailyAggregateOut(
                date=day,
                min=round(min(values), 2),
                max=round(max(values), 2),
                avg=round(statistics.fmean(values), 2),
                count=len(values),
            )
            for day, values in sorted(buckets.items())
        ]
        return DailyAggregatesOut(
            type=type,
            unit=CANONICAL_UNITS[type],
            display_unit=display_unit_for(type, display_unit),
            timezone=tz,
            aggregates=aggregates,
            total_days=len(aggregates),
            range=TimeWindow(start=start, end=end),
        )


measurement_service = MeasurementService(engine=alert_engine)
