from rpm_core.modules.enrollments.models import Enrollment, EnrollmentStatus


async def get_billing_enrollment(patient_id: str) -> Enrollment | None:
    """Active enrollment that drives billing; the primary one wins when several exist."""
    enrollments = await Enrollment.find(
        Enrollment.patient_id == patient_id,
        Enrollment.status == EnrollmentStatus.ACTIVE,
    ).to_list()
    if not enrollments:
        return None
    enrollments.sort(key=lambda e: (not e.is_primary, e.created_at))
    return enrollments[0]


async def active_patient_ids_for_clinician(clinician_id: str) -> list[str]:
    enrollments = await Enrollment.find(
        Enrollment.clinician_id == clinician_id,
        Enrollment.status == EnrollmentStatus.ACTIVE,
    ).to_list()
    return sorted({e.patient_id for e in enrollments})


async def active_enrollments_for_clinic(clinic_id: str) -> list[Enrollment]:
    """One enrollment per patient, preferring the primary one."""
    enrollments = await Enrollment.find(
        Enrollment.clinic_id == clinic_id,
        Enrollment.status == EnrollmentStatus.ACTIVE,
    ).to_list()
    by_patient: dict[str, Enrollment] = {}
    for enrollment in sorted(enrollments, key=lambda e: (not e.is_primary, e.created_at)):
        by_patient.setdefault(enrollment.patient_id, enrollment)
    return [by_patient[p] for p in sorted(by_patient)]


async def find_active_enrollment(patient_id: str, clinician_id: str) -> Enrollment | None:
    return await Enrollment.find_one(
        Enrollment.patient_id == patient_id,
        Enrollment.clinician_id == clinician_id,
        Enrollment.status == EnrollmentStatus.ACTIVE,
    )
