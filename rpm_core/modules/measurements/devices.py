"""
Ingestion of vendor measure groups delivered by the device-sync collaborator.

Token exchange and vendor polling happen elsewhere; this module only turns
already-fetched groups into ingestion requests. Every reading is ingested
independently so one bad value never blocks the rest of the batch, and a
re-delivered batch is absorbed by the (source, external_id) uniqueness.
"""

from dataclasses import dataclass, field

import structlog

from rpm_core.modules.measurements.schemas import MeasurementCreate, VendorMeasureGroup
from rpm_core.modules.measurements.service import MeasurementService, measurement_service
from rpm_core.modules.measurements.units import VENDOR_CODE_TABLE, from_vendor
from rpm_core.shared.exceptions import DomainError, ValidationError

log = structlog.get_logger()


@dataclass
class SyncResult:
    created: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


def external_id_for(group_id: str, code: int) -> str:
    return f"{group_id}_{code}"


class DeviceSyncService:
    def __init__(self, measurements: MeasurementService) -> None:
        self._measurements = measurements

    async def ingest_groups(
        self, patient_id: str, vendor: str, groups: list[VendorMeasureGroup]
    ) -> SyncResult:
        vendor_key = vendor.strip().lower()
        if vendor_key not in VENDOR_CODE_TABLE:
            raise ValidationError(
                f"unknown device vendor '{vendor}'; supported: {', '.join(sorted(VENDOR_CODE_TABLE))}"
            )

        result = SyncResult()
        for group in groups:
            for measure in group.measures:
                decoded = from_vendor(vendor_key, measure.type, measure.value, measure.unit)
                if decoded is None:
                    # Untracked vendor code (e.g. temperature)
                    result.skipped += 1
                    continue

                measurement_type, canonical = decoded
                request = MeasurementCreate(
                    patient_id=patient_id,
                    type=measurement_type,
                    value=canonical.value,
                    unit=canonical.unit,
                    timestamp=group.date,
                    source=vendor_key,
                    external_id=external_id_for(group.grpid, measure.type),
                )
                try:
                    outcome = await self._measurements.ingest(request)
                except DomainError as exc:
                    result.errors.append(f"Failed to create {measurement_type.value}: {exc}")
                    log.warning(
                        "device_measure_rejected",
                        patient_id=patient_id,
                        vendor=vendor_key,
                        external_id=request.external_id,
                        error=str(exc),
                    )
                    continue

                if outcome.is_duplicate:
                    result.skipped += 1
                else:
                    result.created += 1

        log.info(
            "device_sync_completed",
            patient_id=patient_id,
            vendor=vendor_key,
            created=result.created,
            skipped=result.skipped,
            errors=len(result.errors),
        )
        return result


device_sync_service = DeviceSyncService(measurement_service)
