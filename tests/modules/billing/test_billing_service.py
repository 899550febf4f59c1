from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from rpm_core.modules.billing.service import BillingService, default_period
from rpm_core.modules.enrollments.models import BillingProgram, EnrollmentStatus
from rpm_core.modules.measurements.models import Measurement, MeasurementType
from rpm_core.modules.time_entries.models import PerformerType, TimeEntry, TimeEntryActivity
from rpm_core.shared.exceptions import ValidationError

START = datetime(2026, 3, 1, tzinfo=timezone.utc)
END = datetime(2026, 3, 31, 23, 59, 59, tzinfo=timezone.utc)


async def _device_readings(patient_id: str, days: int, source: str = "withings") -> None:
    for day in range(days):
        await Measurement(
            patient_id=patient_id,
            type=MeasurementType.WEIGHT,
            value=80.0,
            unit="kg",
            timestamp=START + timedelta(days=day, hours=7),
            source=source,
            external_id=f"{patient_id}-{source}-{day}" if source != "manual" else None,
        ).insert()


async def _time(
    patient_id: str,
    minutes: int,
    activity: TimeEntryActivity = TimeEntryActivity.PATIENT_REVIEW,
    performer: PerformerType = PerformerType.CLINICAL_STAFF,
    clinician_id: str = "clinician-1",
) -> None:
    await TimeEntry(
        patient_id=patient_id,
        clinician_id=clinician_id,
        clinic_id="clinic-1",
        entry_date=START + timedelta(days=5),
        duration_minutes=minutes,
        activity=activity,
        performer_type=performer,
    ).insert()


def test_default_period_is_calendar_month_of_end() -> None:
    start, end = default_period(None, datetime(2026, 3, 17, 10, 30, tzinfo=timezone.utc))

    assert start == START
    assert end == datetime(2026, 3, 17, 10, 30, tzinfo=timezone.utc)


def test_default_period_opens_at_local_month_start() -> None:
    start, _ = default_period(
        None, datetime(2026, 10, 18, 12, tzinfo=timezone.utc), "America/New_York"
    )

    # Midnight Oct 1 in New York (EDT, UTC-4)
    assert start == datetime(2026, 10, 1, 4, tzinfo=timezone.utc)


def test_naive_bounds_are_patient_wall_clock_time() -> None:
    start, end = default_period(
        datetime(2026, 10, 1), datetime(2026, 10, 31, 23, 59, 59), "America/New_York"
    )

    assert start == datetime(2026, 10, 1, 4, tzinfo=timezone.utc)
    assert end == datetime(2026, 11, 1, 3, 59, 59, tzinfo=timezone.utc)


def test_inverted_period_is_rejected() -> None:
    with pytest.raises(ValidationError):
        default_period(END, START)


@pytest.mark.asyncio
async def test_summary_counts_device_days_and_minutes(db, enroll) -> None:
    await enroll(patient_id="patient-1")
    await _device_readings("patient-1", days=18)
    await _time("patient-1", 25)

    summary = await BillingService().get_summary("patient-1", START, END)

    assert summary.billing_program == BillingProgram.RPM_CCM
    assert summary.device_transmission.total_days == 18
    assert summary.device_transmission.eligible is True
    assert summary.time.rpm_minutes == 25
    assert summary.initial_setup.eligible_99453 is True
    assert summary.eligible_codes == ["99453", "99454", "99457"]


@pytest.mark.asyncio
async def test_manual_readings_do_not_count_as_device_days(db, enroll) -> None:
    await enroll(patient_id="patient-1")
    await _device_readings("patient-1", days=20, source="manual")
    await _device_readings("patient-1", days=3)

    summary = await BillingService().get_summary("patient-1", START, END)

    assert summary.device_transmission.total_days == 3
    assert summary.eligible_codes == ["99445"]


@pytest.mark.asyncio
async def test_readings_outside_period_are_ignored(db, enroll) -> None:
    await enroll(patient_id="patient-1")
    await _device_readings("patient-1", days=18)

    summary = await BillingService().get_summary(
        "patient-1", START + timedelta(days=10), END
    )

    assert summary.device_transmission.total_days == 8


@pytest.mark.asyncio
async def test_enrollment_timezone_and_setup_history_apply(db, enroll) -> None:
    await enroll(
        patient_id="patient-1",
        timezone="Pacific/Honolulu",
        billing_program=BillingProgram.RPM_PCM,
        initial_setup_billed_at=START - timedelta(days=40),
    )
    # 07:00 UTC is the previous evening in Honolulu, so day one falls in February
    await _device_readings("patient-1", days=17)
    await _time("patient-1", 35, TimeEntryActivity.CARE_PLAN_UPDATE, PerformerType.PHYSICIAN_QHP)

    summary = await BillingService().get_summary("patient-1", START, END)

    assert summary.timezone == "Pacific/Honolulu"
    assert summary.device_transmission.total_days == 17
    assert str(summary.device_transmission.dates[0]) == "2026-02-28"
    assert summary.initial_setup.already_billed is True
    assert summary.eligible_codes == ["99454", "99424"]


@pytest.mark.asyncio
async def test_unenrolled_patient_uses_defaults(db) -> None:
    summary = await BillingService().get_summary("patient-7", START, END)

    assert summary.billing_program == BillingProgram.RPM_CCM
    assert summary.timezone == "UTC"
    assert summary.eligible_codes == []


@pytest.mark.asyncio
async def test_clinic_report_rolls_up_active_patients(db, enroll) -> None:
    await enroll(patient_id="patient-1")
    await enroll(patient_id="patient-2")
    await enroll(patient_id="patient-3", status=EnrollmentStatus.ENDED)
    await _device_readings("patient-1", days=16)
    await _time("patient-1", 20)
    await _time("patient-2", 30, TimeEntryActivity.PHONE_CALL)
    await _device_readings("patient-3", days=20)

    report = await BillingService().get_clinic_report("clinic-1", START, END)

    assert [p.patient_id for p in report.patients] == ["patient-1", "patient-2"]
    assert report.summary.total_patients == 2
    assert report.summary.patients_with_device_data == 1
    assert report.summary.total_rpm_minutes == 20
    assert report.summary.total_ccm_minutes == 30
    assert report.summary.patients_by_code == {
        "99453": 1,
        "99454": 1,
        "99457": 1,
        "99490": 1,
    }


@pytest.mark.asyncio
async def test_billing_endpoints(client: AsyncClient, db, enroll) -> None:
    await enroll(patient_id="patient-1")
    await _device_readings("patient-1", days=2)

    summary = await client.get(
        "/api/v1/patients/patient-1/billing-summary",
        params={"start": START.isoformat(), "end": END.isoformat()},
    )
    report = await client.get("/api/v1/clinics/clinic-1/billing-report")
    inverted = await client.get(
        "/api/v1/patients/patient-1/billing-summary",
        params={"start": END.isoformat(), "end": START.isoformat()},
    )

    assert summary.status_code == 200
    body = summary.json()
    assert body["deviceTransmission"]["totalDays"] == 2
    assert body["deviceTransmission"]["eligible99445"] is True
    assert body["eligibleCodes"] == ["99445"]
    assert report.status_code == 200
    assert report.json()["summary"]["totalPatients"] == 1
    assert inverted.status_code == 400


@pytest.mark.asyncio
async def test_month_boundary_follows_patient_timezone(db, enroll) -> None:
    await enroll(patient_id="patient-1", timezone="America/New_York")
    for external_id, timestamp in [
        # Sep 30, 22:00 local: belongs to September
        ("late-sept", datetime(2026, 10, 1, 2, tzinfo=timezone.utc)),
        ("oct-2", datetime(2026, 10, 2, 12, tzinfo=timezone.utc)),
    ]:
        await Measurement(
            patient_id="patient-1",
            type=MeasurementType.WEIGHT,
            value=80.0,
            unit="kg",
            timestamp=timestamp,
            source="withings",
            external_id=external_id,
        ).insert()
    service = BillingService()

    october = await service.get_summary(
        "patient-1", period_end=datetime(2026, 10, 18, 12, tzinfo=timezone.utc)
    )
    september = await service.get_summary(
        "patient-1", datetime(2026, 9, 1), datetime(2026, 9, 30, 23, 59, 59)
    )

    assert [str(d) for d in october.device_transmission.dates] == ["2026-10-02"]
    assert october.period.start == datetime(2026, 10, 1, 4, tzinfo=timezone.utc)
    assert [str(d) for d in september.device_transmission.dates] == ["2026-09-30"]
