import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_critical_results_raise_alert(client: AsyncClient, db) -> None:
    resp = await client.post(
        "/api/v1/labs/results/evaluate",
        json={
            "patientId": "patient-1",
            "reportId": "lab-2026-0412",
            "collectedAt": "2026-04-12T08:15:00Z",
            "results": [
                {"analyte": "potassium", "value": 6.7, "unit": "mmol/L", "flag": "C"},
                {"analyte": "eGFR", "value": 14, "unit": "mL/min/1.73m2", "flag": "C"},
                {"analyte": "sodium", "value": 138, "unit": "mmol/L"},
            ],
        },
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["criticalCount"] == 2
    assert len(body["alertIds"]) == 1
    [alert] = db["alerts"]
    assert alert.rule_id == "lab_critical"
    assert alert.inputs.report_id == "lab-2026-0412"


@pytest.mark.asyncio
async def test_second_critical_report_updates_open_alert(client: AsyncClient, db) -> None:
    payload = {
        "patientId": "patient-1",
        "results": [{"analyte": "potassium", "value": 6.9, "flag": "C"}],
    }

    first = await client.post("/api/v1/labs/results/evaluate", json=payload)
    second = await client.post("/api/v1/labs/results/evaluate", json=payload)

    assert first.json()["alertIds"] == second.json()["alertIds"]
    assert len(db["alerts"]) == 1


@pytest.mark.asyncio
async def test_non_critical_report_raises_nothing(client: AsyncClient, db) -> None:
    resp = await client.post(
        "/api/v1/labs/results/evaluate",
        json={"patientId": "patient-1", "results": [{"analyte": "albumin", "value": 3.1, "flag": "L"}]},
    )

    assert resp.json() == {"patientId": "patient-1", "criticalCount": 0, "alertIds": []}


@pytest.mark.asyncio
async def test_empty_batch_is_rejected(client: AsyncClient, db) -> None:
    resp = await client.post(
        "/api/v1/labs/results/evaluate", json={"patientId": "patient-1", "results": []}
    )

    assert resp.status_code == 422
