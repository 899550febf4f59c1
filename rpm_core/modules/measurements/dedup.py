"""
Duplicate detection for incoming measurements.

Callers go through ``DeduplicationGuard`` and never special-case the channel:
device readings are matched on their vendor record id, manual readings on an
external id or a time/value window. Both channels are also backed by unique
indexes so a race between check and insert surfaces as ``DuplicateKeyError``,
which the guard turns back into a duplicate result via ``resolve_conflict``.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

import structlog

from rpm_core.modules.measurements.models import Measurement, MeasurementType
from rpm_core.shared.time import ensure_utc

log = structlog.get_logger()

MANUAL_WINDOW = timedelta(minutes=5)
MANUAL_RELATIVE_TOLERANCE = 0.001
MANUAL_ABSOLUTE_TOLERANCE = 0.1


@dataclass(frozen=True)
class DedupResult:
    is_duplicate: bool
    existing: Measurement | None = None

    @property
    def existing_measurement_id(self) -> str | None:
        if self.existing is None or self.existing.id is None:
            return None
        return str(self.existing.id)


ORIGINAL = DedupResult(is_duplicate=False)


def manual_tolerance(value: float) -> float:
    return max(abs(value) * MANUAL_RELATIVE_TOLERANCE, MANUAL_ABSOLUTE_TOLERANCE)


def manual_dedup_key(
    patient_id: str,
    measurement_type: MeasurementType,
    timestamp: datetime,
    value: float,
) -> str:
    """
    Bucket key for manual readings: patient, type, UTC minute and value at 0.1
    resolution. Two submissions sharing a key are always inside the manual
    window and tolerance, so a unique index on it only rejects true duplicates.
    """
    minute = int(ensure_utc(timestamp).timestamp()) // 60
    return f"{patient_id}|{measurement_type.value}|{minute}|{round(value, 1):.1f}"


async def find_by_external_id(candidate: Measurement) -> Measurement | None:
    if not candidate.external_id:
        return None
    return await Measurement.find_one(
        Measurement.source == candidate.source,
        Measurement.external_id == candidate.external_id,
    )


class DedupStrategy(Protocol):
    async def find_existing(self, candidate: Measurement) -> Measurement | None: ...

    async def resolve_conflict(self, candidate: Measurement) -> Measurement | None: ...


class DeviceChannelStrategy:
    """Device rows are identified by (source, external_id)."""

    async def find_existing(self, candidate: Measurement) -> Measurement | None:
        return await find_by_external_id(candidate)

    async def resolve_conflict(self, candidate: Measurement) -> Measurement | None:
        return await self.find_existing(candidate)


class ManualWindowStrategy:
    """
    Patient-entered rows within +/- 5 minutes and a small value tolerance.

    A client-supplied `external_id` is also unique per source, so a resubmission
    under the same id is a duplicate whatever its time or value.
    """

    def __init__(self, window: timedelta = MANUAL_WINDOW) -> None:
        self._window = window

    async def find_existing(self, candidate: Measurement) -> Measurement | None:
        by_external_id = await find_by_external_id(candidate)
        if by_external_id is not None:
            return by_external_id
        timestamp = ensure_utc(candidate.timestamp)
        nearby = await Measurement.find(
            Measurement.patient_id == candidate.patient_id,
            Measurement.type == candidate.type,
            Measurement.timestamp >= timestamp - self._window,
            Measurement.timestamp <= timestamp + self._window,
        ).to_list()

        tolerance = manual_tolerance(candidate.value)
        matches = [m for m in nearby if abs(m.value - candidate.value) <= tolerance]
        if not matches:
            return None
        # Closest in time wins when several rows qualify
        return min(matches, key=lambda m: abs(ensure_utc(m.timestamp) - timestamp))

    async def resolve_conflict(self, candidate: Measurement) -> Measurement | None:
        by_external_id = await find_by_external_id(candidate)
        if by_external_id is not None:
            return by_external_id
        if candidate.dedup_key:
            existing = await Measurement.find_one(
                Measurement.dedup_key == candidate.dedup_key
            )
            if existing is not None:
                return existing
        return await self.find_existing(candidate)


class DeduplicationGuard:
    def __init__(
        self,
        device: DedupStrategy | None = None,
        manual: DedupStrategy | None = None,
    ) -> None:
        self._device = device or DeviceChannelStrategy()
        self._manual = manual or ManualWindowStrategy()

    def strategy_for(self, candidate: Measurement) -> DedupStrategy:
        return self._manual if candidate.is_manual else self._device

    async def check(self, candidate: Measurement) -> DedupResult:
        """Classify a not-yet-persisted measurement as original or duplicate."""
        existing = await self.strategy_for(candidate).find_existing(candidate)
        if existing is None:
            return ORIGINAL
        log.info(
            "measurement_duplicate_detected",
            patient_id=candidate.patient_id,
            type=candidate.type.value,
            source=candidate.source,
            existing_id=str(existing.id),
        )
        return DedupResult(is_duplicate=True, existing=existing)

    async def resolve_conflict(self, candidate: Measurement) -> DedupResult:
        """
        Called after the store rejected an insert on a uniqueness index.
        Returns the row that won the race as a duplicate.
        """
        existing = await self.strategy_for(candidate).resolve_conflict(candidate)
        log.info(
            "measurement_insert_conflict",
            patient_id=candidate.patient_id,
            type=candidate.type.value,
            source=candidate.source,
            existing_id=str(existing.id) if existing else None,
        )
        if existing is None:
            return ORIGINAL
        return DedupResult(is_duplicate=True, existing=existing)
