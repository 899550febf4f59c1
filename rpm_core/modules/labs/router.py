"""Lab result evaluation. Results are stored by the lab integration; this only alerts."""

from fastapi import APIRouter

from rpm_core.modules.alerts.service import alert_engine
from rpm_core.modules.labs.schemas import LabEvaluationResponse, LabFlag, LabResultImport

router = APIRouter()


@router.post(
    "/labs/results/evaluate",
    response_model=LabEvaluationResponse,
    summary="Raise alerts for critical values in a lab report",
)
async def evaluate_lab_results(body: LabResultImport) -> LabEvaluationResponse:
    alerts = await alert_engine.evaluate_lab_results(body)
    return LabEvaluationResponse(
        patient_id=body.patient_id,
        critical_count=sum(1 for r in body.results if r.flag == LabFlag.CRITICAL),
        alert_ids=[str(a.id) for a in alerts],
    )
