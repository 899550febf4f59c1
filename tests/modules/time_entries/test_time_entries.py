from datetime import timedelta

import pytest
from httpx import AsyncClient

from rpm_core.core.config import settings
from rpm_core.modules.time_entries.models import TimeEntryActivity
from rpm_core.modules.time_entries.schemas import TimeEntryCreate, TimeEntryUpdate
from rpm_core.modules.time_entries.service import (
    TimeEntryService,
    validate_duration,
    validate_entry_date,
)
from rpm_core.shared.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from rpm_core.shared.time import utcnow

HEADERS = {"X-Clinician-ID": "clinician-1"}


def _payload(**overrides) -> dict:
    data = {
        "patientId": "patient-1",
        "entryDate": (utcnow() - timedelta(days=1)).isoformat(),
        "durationMinutes": 15,
        "activity": "PATIENT_REVIEW",
    }
    data.update(overrides)
    return data


@pytest.mark.parametrize("minutes", [0, 121, -5])
def test_duration_out_of_range(minutes: int) -> None:
    with pytest.raises(ValidationError):
        validate_duration(minutes)


def test_duration_bounds_are_inclusive() -> None:
    validate_duration(1)
    validate_duration(120)


def test_entry_date_window() -> None:
    now = utcnow()

    assert validate_entry_date(now - timedelta(days=settings.TIME_ENTRY_LOOKBACK_DAYS - 1), now)
    with pytest.raises(ValidationError):
        validate_entry_date(now + timedelta(hours=1), now)
    with pytest.raises(ValidationError):
        validate_entry_date(now - timedelta(days=settings.TIME_ENTRY_LOOKBACK_DAYS + 1), now)


@pytest.mark.asyncio
class TestTimeEntryService:
    async def test_create_requires_active_enrollment(self, db) -> None:
        payload = TimeEntryCreate(
            patient_id="patient-1",
            entry_date=utcnow() - timedelta(hours=3),
            duration_minutes=20,
            activity=TimeEntryActivity.PHONE_CALL,
        )

        with pytest.raises(PermissionDeniedError):
            await TimeEntryService().create(payload, "clinician-1")

        assert db["time_entries"] == []

    async def test_clinic_defaults_from_enrollment(self, db, enroll) -> None:
        await enroll(clinic_id="clinic-9")
        payload = TimeEntryCreate(
            patient_id="patient-1",
            entry_date=utcnow() - timedelta(hours=3),
            duration_minutes=20,
            activity=TimeEntryActivity.PHONE_CALL,
        )

        entry = await TimeEntryService().create(payload, "clinician-1")

        assert entry.clinic_id == "clinic-9"
        assert entry.clinician_id == "clinician-1"

    async def test_update_applies_only_sent_fields(self, db, enroll) -> None:
        await enroll()
        service = TimeEntryService()
        entry = await service.create(
            TimeEntryCreate(
                patient_id="patient-1",
                entry_date=utcnow() - timedelta(hours=3),
                duration_minutes=20,
                activity=TimeEntryActivity.PATIENT_REVIEW,
                notes="reviewed weights",
            ),
            "clinician-1",
        )

        updated = await service.update(
            str(entry.id), TimeEntryUpdate(duration_minutes=35), "clinician-1"
        )

        assert updated.duration_minutes == 35
        assert updated.notes == "reviewed weights"
        assert updated.activity == TimeEntryActivity.PATIENT_REVIEW

    async def test_malformed_id_is_not_found(self, db) -> None:
        with pytest.raises(NotFoundError):
            await TimeEntryService().delete("nope", "clinician-1")


@pytest.mark.asyncio
async def test_create_and_list_time_entries(client: AsyncClient, db, enroll) -> None:
    await enroll()

    # Step 1: Record two entries
    first = await client.post("/api/v1/time-entries", json=_payload(), headers=HEADERS)
    second = await client.post(
        "/api/v1/time-entries",
        json=_payload(
            durationMinutes=25,
            activity="CARE_PLAN_UPDATE",
            performerType="PHYSICIAN_QHP",
            entryDate=(utcnow() - timedelta(hours=2)).isoformat(),
        ),
        headers=HEADERS,
    )
    assert first.status_code == 201
    assert second.status_code == 201
    assert first.json()["clinicId"] == "clinic-1"
    assert first.json()["performerType"] == "CLINICAL_STAFF"

    # Step 2: List newest first with the minute total
    listed = await client.get("/api/v1/patients/patient-1/time-entries")
    assert listed.status_code == 200
    body = listed.json()
    assert body["count"] == 2
    assert body["totalMinutes"] == 40
    assert body["entries"][0]["id"] == second.json()["id"]


@pytest.mark.asyncio
async def test_create_validation_errors(client: AsyncClient, db, enroll) -> None:
    await enroll()

    too_long = await client.post(
        "/api/v1/time-entries", json=_payload(durationMinutes=180), headers=HEADERS
    )
    future = await client.post(
        "/api/v1/time-entries",
        json=_payload(entryDate=(utcnow() + timedelta(days=1)).isoformat()),
        headers=HEADERS,
    )
    stale = await client.post(
        "/api/v1/time-entries",
        json=_payload(entryDate=(utcnow() - timedelta(days=30)).isoformat()),
        headers=HEADERS,
    )
    not_enrolled = await client.post(
        "/api/v1/time-entries", json=_payload(), headers={"X-Clinician-ID": "clinician-2"}
    )

    assert too_long.status_code == 400
    assert future.status_code == 400
    assert stale.status_code == 400
    assert not_enrolled.status_code == 403
    assert db["time_entries"] == []


@pytest.mark.asyncio
async def test_only_author_can_edit_or_delete(client: AsyncClient, db, enroll) -> None:
    await enroll()
    await enroll(clinician_id="clinician-2")
    created = await client.post("/api/v1/time-entries", json=_payload(), headers=HEADERS)
    entry_id = created.json()["id"]
    other = {"X-Clinician-ID": "clinician-2"}

    patched = await client.patch(
        f"/api/v1/time-entries/{entry_id}", json={"durationMinutes": 30}, headers=other
    )
    deleted = await client.delete(f"/api/v1/time-entries/{entry_id}", headers=other)
    assert patched.status_code == 403
    assert deleted.status_code == 403

    own_patch = await client.patch(
        f"/api/v1/time-entries/{entry_id}", json={"notes": "follow-up call"}, headers=HEADERS
    )
    assert own_patch.status_code == 200
    assert own_patch.json()["notes"] == "follow-up call"
    assert own_patch.json()["durationMinutes"] == 15

    own_delete = await client.delete(f"/api/v1/time-entries/{entry_id}", headers=HEADERS)
    assert own_delete.status_code == 204
    assert db["time_entries"] == []

    gone = await client.delete(f"/api/v1/time-entries/{entry_id}", headers=HEADERS)
    assert gone.status_code == 404
