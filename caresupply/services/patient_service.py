from sqlalchemy import func, select
from sqlalchemy.orm import Session

from caresupply.core.exceptions import ForbiddenError, NotFoundError
from caresupply.models.institution import Patient


def get_patient(db: Session, patient_id: int, *, institution_id: int | None = None) -> Patient:
    patient = db.get(Patient, patient_id)
    if patient is None:
        raise NotFoundError("Patient {} not found".format(patient_id))
    if institution_id is not None and patient.institution_id != institution_id:
        raise ForbiddenError("Patient {} belongs to another institution".format(patient_id))
    return patient


def list_active_patients(db: Session, institution_id: int) -> list[Patient]:
    stmt = (
        select(Patient)
        .where(Patient.institution_id == institution_id, Patient.is_active.is_(True))
        .order_by(Patient.id)
    )
    return list(db.execute(stmt).scalars().all())


def count_active_patients(db: Session, institution_id: int) -> int:
    stmt = select(func.count(Patient.id)).where(
        Patient.institution_id == institution_id,
        Patient.is_active.is_(True),
    )
    return int(db.execute(stmt).scalar_one())


__all__ = ["count_active_patients", "get_patient", "list_active_patients"]
