"""
Trend labels and blood-pressure pairing for measurement series.

Trends compare the mean of the newer half of a series against the older half
using fixed clinical deltas per type, never percentages.
"""

import statistics
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, Sequence

from rpm_core.modules.measurements.models import MeasurementType
from rpm_core.shared.time import ensure_utc

MIN_TREND_POINTS = 4
MIN_TREND_SPAN = timedelta(hours=24)
BP_PAIRING_WINDOW = timedelta(seconds=60)

# Clinically significant absolute change, in canonical units
TREND_THRESHOLDS: dict[MeasurementType, float] = {
    MeasurementType.WEIGHT: 1.0,
    MeasurementType.BP_SYSTOLIC: 10.0,
    MeasurementType.BP_DIASTOLIC: 5.0,
    MeasurementType.SPO2: 2.0,
    MeasurementType.HEART_RATE: 10.0,
    MeasurementType.FAT_FREE_MASS: 1.0,
    MeasurementType.FAT_MASS: 1.0,
    MeasurementType.MUSCLE_MASS: 1.0,
    MeasurementType.HYDRATION: 1.0,
    MeasurementType.BONE_MASS: 0.5,
    MeasurementType.FAT_RATIO: 1.0,
    MeasurementType.PULSE_WAVE_VELOCITY: 1.0,
}


class TrendLabel(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"
    INSUFFICIENT_DATA = "insufficient_data"


@dataclass(frozen=True)
class SeriesPoint:
    timestamp: datetime
    value: float
    source: str = "manual"


@dataclass(frozen=True)
class TrendMeta:
    method: str
    older_window_size: int
    newer_window_size: int
    older_avg: float
    newer_avg: float
    absolute_change: float
    threshold_used: float
    time_span_hours: float
    min_time_span_hours: float


@dataclass(frozen=True)
class TrendResult:
    label: TrendLabel
    meta: TrendMeta | None = None


def _split_at_median(
    points: Sequence[SeriesPoint],
) -> tuple[list[SeriesPoint], list[SeriesPoint]]:
    """
    Split a time-ordered series at the median timestamp.

    Points sharing the median instant join whichever half is smaller (the older
    one when both are the same size), so neither half is ever empty for n >= 2
    distinct instants.
    """
    epochs = [p.timestamp.timestamp() for p in points]
    median = statistics.median(epochs)

    older = [p for p, e in zip(points, epochs) if e < median]
    newer = [p for p, e in zip(points, epochs) if e > median]
    tied = [p for p, e in zip(points, epochs) if e == median]
    if len(newer) < len(older):
        newer = tied + newer
    else:
        older = older + tied
    return older, newer


def analyze_trend(
    measurement_type: MeasurementType, points: Iterable[SeriesPoint]
) -> TrendResult:
    series = sorted(
        (SeriesPoint(ensure_utc(p.timestamp), p.value, p.source) for p in points),
        key=lambda p: p.timestamp,
    )
    if len(series) < MIN_TREND_POINTS:
        return TrendResult(TrendLabel.INSUFFICIENT_DATA)

    span = series[-1].timestamp - series[0].timestamp
    if span < MIN_TREND_SPAN:
        return TrendResult(TrendLabel.INSUFFICIENT_DATA)

    older, newer = _split_at_median(series)
    if not older or not newer:
        return TrendResult(TrendLabel.INSUFFICIENT_DATA)

    older_avg = statistics.fmean(p.value for p in older)
    newer_avg = statistics.fmean(p.value for p in newer)
    change = newer_avg - older_avg
    threshold = TREND_THRESHOLDS[measurement_type]

    if change > threshold:
        label = TrendLabel.INCREASING
    elif change < -threshold:
        label = TrendLabel.DECREASING
    else:
        label = TrendLabel.STABLE

    meta = TrendMeta(
        method="median_split_comparison",
        older_window_size=len(older),
        newer_window_size=len(newer),
        older_avg=round(older_avg, 2),
        newer_avg=round(newer_avg, 2),
        absolute_change=round(change, 2),
        threshold_used=threshold,
        time_span_hours=round(span.total_seconds() / 3600, 2),
        min_time_span_hours=MIN_TREND_SPAN.total_seconds() / 3600,
    )
    return TrendResult(label, meta)


@dataclass(frozen=True)
class BloodPressurePoint:
    timestamp: datetime
    systolic: float
    diastolic: float
    source: str


@dataclass
class BloodPressureSeries:
    points: list[BloodPressurePoint] = field(default_factory=list)
    paired_count: int = 0
    unpaired_systolic_count: int = 0
    unpaired_diastolic_count: int = 0
    pairing_window_seconds: int = int(BP_PAIRING_WINDOW.total_seconds())


def pair_blood_pressure(
    systolic: Iterable[SeriesPoint],
    diastolic: Iterable[SeriesPoint],
    window: timedelta = BP_PAIRING_WINDOW,
) -> BloodPressureSeries:
    """
    Pair each systolic reading with the closest unused diastolic reading from
    the same source within `window`. Unmatched rows are counted, not dropped.
    """
    systolic_rows = sorted(systolic, key=lambda p: ensure_utc(p.timestamp))
    candidates = sorted(diastolic, key=lambda p: ensure_utc(p.timestamp))
    used = [False] * len(candidates)

    result = BloodPressureSeries(pairing_window_seconds=int(window.total_seconds()))
    for sys_point in systolic_rows:
        sys_time = ensure_utc(sys_point.timestamp)
        best_index: int | None = None
        best_gap: timedelta | None = None
        for index, dia_point in enumerate(candidates):
            if used[index] or dia_point.source != sys_point.source:
                continue
            gap = abs(ensure_utc(dia_point.timestamp) - sys_time)
            if gap <= window and (best_gap is None or gap < best_gap):
                best_index, best_gap = index, gap

        if best_index is None:
            result.unpaired_systolic_count += 1
            continue

        used[best_index] = True
        result.points.append(
            BloodPressurePoint(
                timestamp=sys_time,
                systolic=sys_point.value,
                diastolic=candidates[best_index].value,
                source=sys_point.source,
            )
        )

    result.paired_count = len(result.points)
    result.unpaired_diastolic_count = used.count(False)
    return result
