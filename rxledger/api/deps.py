from fastapi import Depends, Request

from rxledger.core.config import Settings
from rxledger.domain.prescriptions.service import PrescriptionService
from rxledger.infrastructure.ledger.base import LedgerService


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_ledger(request: Request) -> LedgerService:
    """Ledger handle owned by the running application"""
    return request.app.state.ledger


def get_prescription_service(
    ledger: LedgerService = Depends(get_ledger),
) -> PrescriptionService:
    return PrescriptionService(ledger)
