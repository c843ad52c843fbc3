# Prescription domain module
from rxledger.domain.prescriptions.models import (
    FillRequest,
    FillResult,
    HolderPrescription,
    IssuanceResult,
    IssueRequest,
    PatientHistoryEntry,
    PrescriptionDefinition,
    PrescriptionStatus,
)
from rxledger.domain.prescriptions.service import (
    FillEngine,
    HistoryReconstructor,
    HoldingAggregator,
    IssuanceEngine,
    PrescriptionService,
)

__all__ = [
    "FillEngine",
    "FillRequest",
    "FillResult",
    "HistoryReconstructor",
    "HolderPrescription",
    "HoldingAggregator",
    "IssuanceEngine",
    "IssuanceResult",
    "IssueRequest",
    "PatientHistoryEntry",
    "PrescriptionDefinition",
    "PrescriptionService",
    "PrescriptionStatus",
]
