from datetime import date, datetime

from rpm_core.modules.billing.aggregator import DeviceDaySummary, TimeSummary
from rpm_core.modules.enrollments.models import BillingProgram
from rpm_core.shared.schemas import CamelModel, TimeWindow


class DeviceTransmissionOut(CamelModel):
    total_days: int
    dates: list[date]
    eligible: bool
    eligible_99445: bool

    @classmethod
    def from_summary(cls, summary: DeviceDaySummary) -> "DeviceTransmissionOut":
        return cls(
            total_days=summary.total_days,
            dates=summary.dates,
            eligible=summary.eligible,
            eligible_99445=summary.eligible_99445,
        )


class TimeSummaryOut(CamelModel):
    total_minutes: int
    by_activity: dict[str, int]
    rpm_minutes: int
    rpm_physician_minutes: int
    ccm_minutes: int
    care_staff_minutes: int
    care_physician_minutes: int
    eligible_99470: bool
    eligible_99457: bool
    count_99458: int
    eligible_99091: bool
    eligible_99490: bool
    count_99439: int
    eligible_99491: bool
    count_99437: int
    eligible_99424: bool
    count_99425: int
    eligible_99426: bool
    count_99427: int

    @classmethod
    def from_summary(cls, summary: TimeSummary) -> "TimeSummaryOut":
        return cls(**summary.__dict__)


class InitialSetupOut(CamelModel):
    eligible_99453: bool
    already_billed: bool
    billed_at: datetime | None = None


class PatientBillingSummary(CamelModel):
    patient_id: str
    billing_program: BillingProgram
    timezone: str
    period: TimeWindow
    device_transmission: DeviceTransmissionOut
    time: TimeSummaryOut
    initial_setup: InitialSetupOut
    eligible_codes: list[str]


class ClinicBillingTotals(CamelModel):
    total_patients: int
    patients_with_device_data: int
    patients_by_code: dict[str, int]
    total_rpm_minutes: int
    total_ccm_minutes: int


class ClinicBillingReport(CamelModel):
    clinic_id: str
    period: TimeWindow
    summary: ClinicBillingTotals
    patients: list[PatientBillingSummary]
