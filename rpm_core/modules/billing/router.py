from datetime import datetime

from fastapi import APIRouter

from rpm_core.modules.billing.schemas import ClinicBillingReport, PatientBillingSummary
from rpm_core.modules.billing.service import billing_service
from rpm_core.shared import deps
from rpm_core.shared.exceptions import DomainError

router = APIRouter()


@router.get(
    "/patients/{patient_id}/billing-summary",
    response_model=PatientBillingSummary,
    summary="Device days, clinician minutes and eligible CPT codes for a period",
)
async def patient_billing_summary(
    patient_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
) -> PatientBillingSummary:
    """Defaults to the current calendar month."""
    try:
        return await billing_service.get_summary(patient_id, start, end)
    except DomainError as exc:
        raise deps.http_error(exc) from exc


@router.get("/clinics/{clinic_id}/billing-report", response_model=ClinicBillingReport)
async def clinic_billing_report(
    clinic_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
) -> ClinicBillingReport:
    try:
        return await billing_service.get_clinic_report(clinic_id, start, end)
    except DomainError as exc:
        raise deps.http_error(exc) from exc
