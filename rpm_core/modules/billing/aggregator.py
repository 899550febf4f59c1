"""
Billing-period aggregation over device readings and clinician time.

Everything here is a pure function of its inputs so the summary can be
recomputed at any time without changing callers.

Activities are partitioned so a minute never counts twice: RPM activities feed
the RPM time ladder, care-management activities feed CCM or PCM depending on
the enrollment's billing program.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Protocol

from rpm_core.modules.enrollments.models import BillingProgram
from rpm_core.modules.time_entries.models import PerformerType, TimeEntryActivity
from rpm_core.shared.time import ensure_utc, resolve_timezone

RPM_ACTIVITIES = frozenset(
    {
        TimeEntryActivity.PATIENT_REVIEW,
        TimeEntryActivity.DOCUMENTATION,
        TimeEntryActivity.OTHER,
    }
)
CARE_MANAGEMENT_ACTIVITIES = frozenset(
    {
        TimeEntryActivity.CARE_PLAN_UPDATE,
        TimeEntryActivity.COORDINATION,
        TimeEntryActivity.PHONE_CALL,
    }
)

# Device transmission: 99454 at 16+ days, otherwise 99445 at 2-15 days
DEVICE_DAYS_FULL = 16
DEVICE_DAYS_PARTIAL = 2

# RPM management time: 99457 at 20+ minutes, otherwise 99470 at 10-19
RPM_BASE_MINUTES = 20
RPM_PARTIAL_MINUTES = 10
RPM_ADDON_BLOCK = 20
RPM_PHYSICIAN_MINUTES = 30  # 99091

CCM_STAFF_MINUTES = 20  # 99490, add-on 99439 per further 20
CCM_PHYSICIAN_MINUTES = 30  # 99491, add-on 99437 per further 30
PCM_PHYSICIAN_MINUTES = 30  # 99424, add-on 99425 per further 30
PCM_STAFF_MINUTES = 30  # 99426, add-on 99427 per further 30

MAX_ADDON_BLOCKS = 2


class BillableMinutes(Protocol):
    duration_minutes: int
    activity: TimeEntryActivity
    performer_type: PerformerType


@dataclass(frozen=True)
class DeviceDaySummary:
    total_days: int
    dates: list[date]
    eligible: bool
    eligible_99445: bool


@dataclass(frozen=True)
class TimeSummary:
    total_minutes: int = 0
    by_activity: dict[str, int] = field(default_factory=dict)
    rpm_minutes: int = 0
    rpm_physician_minutes: int = 0
    ccm_minutes: int = 0
    care_staff_minutes: int = 0
    care_physician_minutes: int = 0
    eligible_99470: bool = False
    eligible_99457: bool = False
    count_99458: int = 0
    eligible_99091: bool = False
    eligible_99490: bool = False
    count_99439: int = 0
    eligible_99491: bool = False
    count_99437: int = 0
    eligible_99424: bool = False
    count_99425: int = 0
    eligible_99426: bool = False
    count_99427: int = 0


def device_days(timestamps: Iterable[datetime], tz: str = "UTC") -> list[date]:
    """Distinct calendar dates, in the patient's timezone, covered by the readings."""
    zone = resolve_timezone(tz)
    return sorted({ensure_utc(ts).astimezone(zone).date() for ts in timestamps})


def summarize_device_days(dates: Iterable[date]) -> DeviceDaySummary:
    unique = sorted(set(dates))
    total = len(unique)
    eligible = total >= DEVICE_DAYS_FULL
    return DeviceDaySummary(
        total_days=total,
        dates=unique,
        eligible=eligible,
        eligible_99445=not eligible and total >= DEVICE_DAYS_PARTIAL,
    )


def _base_with_addons(minutes: int, threshold: int, block: int) -> tuple[bool, int]:
    if minutes < threshold:
        return False, 0
    return True, min((minutes - threshold) // block, MAX_ADDON_BLOCKS)


def summarize_time(entries: Iterable[BillableMinutes]) -> TimeSummary:
    total = rpm = rpm_physician = care_staff = care_physician = 0
    by_activity: dict[str, int] = {}

    for entry in entries:
        minutes = entry.duration_minutes
        total += minutes
        key = entry.activity.value
        by_activity[key] = by_activity.get(key, 0) + minutes

        is_physician = entry.performer_type == PerformerType.PHYSICIAN_QHP
        if entry.activity in RPM_ACTIVITIES:
            rpm += minutes
            if is_physician:
                rpm_physician += minutes
        elif entry.activity in CARE_MANAGEMENT_ACTIVITIES:
            if is_physician:
                care_physician += minutes
            else:
                care_staff += minutes

    eligible_99457, count_99458 = _base_with_addons(rpm, RPM_BASE_MINUTES, RPM_ADDON_BLOCK)
    eligible_99490, count_99439 = _base_with_addons(
        care_staff, CCM_STAFF_MINUTES, CCM_STAFF_MINUTES
    )
    eligible_99491, count_99437 = _base_with_addons(
        care_physician, CCM_PHYSICIAN_MINUTES, CCM_PHYSICIAN_MINUTES
    )
    eligible_99424, count_99425 = _base_with_addons(
        care_physician, PCM_PHYSICIAN_MINUTES, PCM_PHYSICIAN_MINUTES
    )
    eligible_99426, count_99427 = _base_with_addons(
        care_staff, PCM_STAFF_MINUTES, PCM_STAFF_MINUTES
    )

    return TimeSummary(
        total_minutes=total,
        by_activity=by_activity,
        rpm_minutes=rpm,
        rpm_physician_minutes=rpm_physician,
        ccm_minutes=care_staff + care_physician,
        care_staff_minutes=care_staff,
        care_physician_minutes=care_physician,
        eligible_99470=not eligible_99457 and rpm >= RPM_PARTIAL_MINUTES,
        eligible_99457=eligible_99457,
        count_99458=count_99458,
        eligible_99091=rpm_physician >= RPM_PHYSICIAN_MINUTES,
        eligible_99490=eligible_99490,
        count_99439=count_99439,
        eligible_99491=eligible_99491,
        count_99437=count_99437,
        eligible_99424=eligible_99424,
        count_99425=count_99425,
        eligible_99426=eligible_99426,
        count_99427=count_99427,
    )


def initial_setup_eligible(device: DeviceDaySummary, already_billed: bool) -> bool:
    """99453 is billable once per enrollment, the first period that reaches 99454."""
    return device.eligible and not already_billed


def eligible_codes(
    program: BillingProgram,
    device: DeviceDaySummary,
    time: TimeSummary,
    initial_setup_billed: bool = False,
) -> list[str]:
    """CPT codes for the period; add-on codes repeat once per block."""
    codes: list[str] = []
    if initial_setup_eligible(device, initial_setup_billed):
        codes.append("99453")

    if device.eligible:
        codes.append("99454")
    elif device.eligible_99445:
        codes.append("99445")

    if time.eligible_99457:
        codes.append("99457")
        codes.extend(["99458"] * time.count_99458)
    elif time.eligible_99470:
        codes.append("99470")

    if time.eligible_99091:
        codes.append("99091")

    if program == BillingProgram.RPM_CCM:
        # Staff and physician CCM are separate services and may both be billed
        if time.eligible_99490:
            codes.append("99490")
            codes.extend(["99439"] * time.count_99439)
        if time.eligible_99491:
            codes.append("99491")
            codes.extend(["99437"] * time.count_99437)
    elif program == BillingProgram.RPM_PCM:
        # One PCM family per period; physician time wins
        if time.eligible_99424:
            codes.append("99424")
            codes.extend(["99425"] * time.count_99425)
        elif time.eligible_99426:
            codes.append("99426")
            codes.extend(["99427"] * time.count_99427)

    return codes
