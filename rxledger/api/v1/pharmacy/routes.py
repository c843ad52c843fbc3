from fastapi import APIRouter, Depends, status
from typing import List

from rxledger.api.deps import get_app_settings, get_prescription_service
from rxledger.api.v1.pharmacy.schemas import FillCreate
from rxledger.core.config import Settings
from rxledger.core.exceptions import ErrorResponse
from rxledger.domain.prescriptions.models import FillResult, HolderPrescription
from rxledger.domain.prescriptions.service import PrescriptionService
from rxledger.infrastructure.ledger.base import SigningKey

router = APIRouter(
    prefix="/pharmacy",
    tags=["Pharmacy"],
    responses={
        400: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)


@router.get("/{alias}/prescriptions", response_model=List[HolderPrescription])
def view_holdings(
    alias: str,
    service: PrescriptionService = Depends(get_prescription_service),
):
    return list(service.get_holder_summary(alias))


@router.post("/{alias}/fills", response_model=FillResult, status_code=status.HTTP_201_CREATED)
def fill(
    alias: str,
    fill_in: FillCreate,
    service: PrescriptionService = Depends(get_prescription_service),
    settings: Settings = Depends(get_app_settings),
):
    xpub = fill_in.holder_xpub or settings.HOLDER_XPUB
    credential = SigningKey(xpub=xpub) if xpub else None
    return service.fill(fill_in.asset_id, fill_in.amount, alias, credential=credential)
