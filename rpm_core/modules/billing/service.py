from datetime import datetime, timezone

import structlog

from rpm_core.core.config import settings
from rpm_core.modules.billing.aggregator import (
    device_days,
    eligible_codes,
    initial_setup_eligible,
    summarize_device_days,
    summarize_time,
)
from rpm_core.modules.billing.schemas import (
    ClinicBillingReport,
    ClinicBillingTotals,
    DeviceTransmissionOut,
    InitialSetupOut,
    PatientBillingSummary,
    TimeSummaryOut,
)
from rpm_core.modules.enrollments.models import BillingProgram, Enrollment
from rpm_core.modules.enrollments.service import (
    active_enrollments_for_clinic,
    get_billing_enrollment,
)
from rpm_core.modules.measurements.models import MANUAL_SOURCE, Measurement
from rpm_core.modules.time_entries.models import TimeEntry
from rpm_core.shared.exceptions import ValidationError
from rpm_core.shared.schemas import TimeWindow
from rpm_core.shared.time import localize, resolve_timezone, utcnow

log = structlog.get_logger()


def default_period(
    start: datetime | None, end: datetime | None, tz: str = "UTC"
) -> tuple[datetime, datetime]:
    """
    Resolve a billing window in the patient's timezone.

    Naive bounds are read as the patient's wall-clock time. Without `start` the
    window opens at local midnight on the first of the month containing `end`.
    """
    zone = resolve_timezone(tz)
    end = localize(end, zone) if end else utcnow()
    if start:
        start = localize(start, zone)
    else:
        month_start = end.astimezone(zone).replace(
            day=1, hour=0, minute=0, second=0, microsecond=0
        )
        start = month_start.astimezone(timezone.utc)
    if start > end:
        raise ValidationError("period start must not be after period end")
    return start, end


class BillingService:
    """
    Per-patient billing summaries computed from source data on every request.

    Nothing is cached, so edits to time entries are reflected immediately.
    """

    async def get_summary(
        self,
        patient_id: str,
        period_start: datetime | None = None,
        period_end: datetime | None = None,
    ) -> PatientBillingSummary:
        enrollment = await get_billing_enrollment(patient_id)
        return await self._summarize(patient_id, enrollment, period_start, period_end)

    async def get_clinic_report(
        self,
        clinic_id: str,
        period_start: datetime | None = None,
        period_end: datetime | None = None,
    ) -> ClinicBillingReport:
        # Each patient's window follows their own timezone; the header uses the default
        start, end = default_period(
            period_start, period_end, settings.DEFAULT_PATIENT_TIMEZONE
        )
        patients: list[PatientBillingSummary] = []
        for enrollment in await active_enrollments_for_clinic(clinic_id):
            patients.append(
                await self._summarize(
                    enrollment.patient_id, enrollment, period_start, period_end
                )
            )

        by_code: dict[str, int] = {}
        for summary in patients:
            for code in set(summary.eligible_codes):
                by_code[code] = by_code.get(code, 0) + 1

        log.info(
            "clinic_billing_report_built",
            clinic_id=clinic_id,
            patients=len(patients),
            period_start=start.isoformat(),
            period_end=end.isoformat(),
        )
        return ClinicBillingReport(
            clinic_id=clinic_id,
            period=TimeWindow(start=start, end=end),
            summary=ClinicBillingTotals(
                total_patients=len(patients),
                patients_with_device_data=sum(
                    1 for p in patients if p.device_transmission.total_days > 0
                ),
                patients_by_code=dict(sorted(by_code.items())),
                total_rpm_minutes=sum(p.time.rpm_minutes for p in patients),
                total_ccm_minutes=sum(p.time.ccm_minutes for p in patients),
            ),
            patients=patients,
        )

    async def _summarize(
        self,
        patient_id: str,
        enrollment: Enrollment | None,
        period_start: datetime | None,
        period_end: datetime | None,
    ) -> PatientBillingSummary:
        if enrollment is None:
            program = BillingProgram.RPM_CCM
            tz = settings.DEFAULT_PATIENT_TIMEZONE
            initial_setup_billed_at = None
        else:
            program = enrollment.billing_program
            tz = enrollment.timezone
            initial_setup_billed_at = enrollment.initial_setup_billed_at
        start, end = default_period(period_start, period_end, tz)

        readings = await Measurement.find(
            Measurement.patient_id == patient_id,
            Measurement.source != MANUAL_SOURCE,
            Measurement.timestamp >= start,
            Measurement.timestamp <= end,
        ).to_list()
        entries = await TimeEntry.find(
            TimeEntry.patient_id == patient_id,
            TimeEntry.entry_date >= start,
            TimeEntry.entry_date <= end,
        ).to_list()

        device = summarize_device_days(device_days((r.timestamp for r in readings), tz))
        time = summarize_time(entries)
        already_billed = initial_setup_billed_at is not None
        codes = eligible_codes(program, device, time, initial_setup_billed=already_billed)

        log.debug(
            "billing_summary_computed",
            patient_id=patient_id,
            device_days=device.total_days,
            rpm_minutes=time.rpm_minutes,
            codes=codes,
        )
        return PatientBillingSummary(
            patient_id=patient_id,
            billing_program=program,
            timezone=tz,
            period=TimeWindow(start=start, end=end),
            device_transmission=DeviceTransmissionOut.from_summary(device),
            time=TimeSummaryOut.from_summary(time),
            initial_setup=InitialSetupOut(
                eligible_99453=initial_setup_eligible(device, already_billed),
                already_billed=already_billed,
                billed_at=initial_setup_billed_at,
            ),
            eligible_codes=codes,
        )


billing_service = BillingService()
