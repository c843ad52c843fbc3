from fastapi import APIRouter, Depends, status
from typing import List

from rxledger.api.deps import get_app_settings, get_prescription_service
from rxledger.api.v1.provider.schemas import PrescribeRequest
from rxledger.core.config import Settings
from rxledger.core.exceptions import ErrorResponse, ValidationError
from rxledger.domain.prescriptions.models import (
    IssuanceResult,
    PatientHistoryEntry,
    PrescriptionDefinition,
)
from rxledger.domain.prescriptions.service import PrescriptionService
from rxledger.infrastructure.ledger.base import SigningKey

router = APIRouter(
    prefix="/provider",
    tags=["Provider"],
    responses={
        400: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)


@router.post("/prescriptions", response_model=IssuanceResult, status_code=status.HTTP_201_CREATED)
def prescribe(
    prescription_in: PrescribeRequest,
    service: PrescriptionService = Depends(get_prescription_service),
    settings: Settings = Depends(get_app_settings),
):
    """Issue a prescription to a pharmacy"""
    xpub = prescription_in.issuer_xpub or settings.ISSUER_XPUB
    if not xpub:
        raise ValidationError(
            message="An issuer key is required to sign the prescription",
            details={"field": "issuer_xpub"},
        )

    definition = PrescriptionDefinition.create(
        **prescription_in.model_dump(exclude={"pharmacy", "issuer_xpub"})
    )
    return service.issue(definition, SigningKey(xpub=xpub), prescription_in.pharmacy)


@router.get("/patients/{patient_id}/prescriptions", response_model=List[PatientHistoryEntry])
def view_patient(
    patient_id: str,
    service: PrescriptionService = Depends(get_prescription_service),
):
    """Every prescription issued for a patient with what has been filled"""
    return list(service.get_patient_history(patient_id))
