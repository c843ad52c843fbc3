"""
Prescription Domain Models

Value objects for:
- prescription definitions (the immutable clinical data carried by an asset)
- issuance and fill requests
- derived views: patient history entries and holder (pharmacy) holdings

None of these are persisted by this service; the ledger owns the data and
every view is rebuilt from ledger queries on demand.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError
import enum

from rxledger.core.exceptions import LookupStatus, handle_validation_error


class PrescriptionStatus(str, enum.Enum):
    """Fill state of a prescription, derived from ledger history"""
    OUTSTANDING = "OUTSTANDING"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FULLY_FILLED = "FULLY_FILLED"
    UNKNOWN = "UNKNOWN"


def _build(model: type, data: Dict[str, Any]):
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise handle_validation_error(e) from e


class PrescriptionDefinition(BaseModel):
    """Clinical definition of a prescription, fixed at issuance"""
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    prescriber_id: str = Field(..., min_length=1)
    patient_id: str = Field(..., min_length=1)
    medication: str = Field(..., min_length=1)
    strength: str = Field(..., min_length=1)
    route: str = Field(..., min_length=1)
    frequency: str = Field(..., min_length=1)
    refills: int = Field(..., ge=0)
    quantity: int = Field(..., gt=0)

    @property
    def total_issued(self) -> int:
        """Units needed to cover the first fill and every refill"""
        return self.quantity * (self.refills + 1)

    @classmethod
    def create(cls, **fields: Any) -> "PrescriptionDefinition":
        return _build(cls, fields)

    def to_ledger_definition(self) -> Dict[str, Any]:
        return {
            "prescribed_by": self.prescriber_id,
            "patient_id": self.patient_id,
            "medication": self.medication,
            "strength": self.strength,
            "frequency": self.frequency,
            "route": self.route,
            "refills": self.refills,
            "quantity": self.quantity,
        }

    @classmethod
    def from_ledger_definition(cls, definition: Dict[str, Any]) -> "PrescriptionDefinition":
        return _build(cls, {
            "prescriber_id": definition.get("prescribed_by"),
            "patient_id": definition.get("patient_id"),
            "medication": definition.get("medication"),
            "strength": definition.get("strength"),
            "route": definition.get("route"),
            "frequency": definition.get("frequency"),
            "refills": definition.get("refills"),
            "quantity": definition.get("quantity"),
        })


class FillRequest(BaseModel):
    """A dispensing event: retire ``amount`` units held by ``holder``"""
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    asset_id: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0)
    holder: str = Field(..., min_length=1)

    @classmethod
    def create(cls, **fields: Any) -> "FillRequest":
        return _build(cls, fields)


class IssueRequest(BaseModel):
    """A prescription to issue to a holder account"""
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    definition: PrescriptionDefinition
    holder: str = Field(..., min_length=1)

    @classmethod
    def create(cls, definition: PrescriptionDefinition, holder: str) -> "IssueRequest":
        return _build(cls, {"definition": definition, "holder": holder})


class IssuanceResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    asset_id: str
    transaction_id: str
    total_issued: int
    holder: str


class FillResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    transaction_id: str
    asset_id: str
    amount: int
    holder: str


class PatientHistoryEntry(BaseModel):
    """One prescription of a patient with its fill state.

    ``fills_status`` and ``balance_status`` say whether ``fills`` and
    ``outstanding`` came from the ledger or are placeholders for a failed
    or empty query.
    """
    model_config = ConfigDict(frozen=True)

    asset_id: str
    definition: Optional[PrescriptionDefinition] = None
    raw_definition: Dict[str, Any] = {}
    total_issued: Optional[int] = None
    fills: List[int] = []
    total_filled: int = 0
    outstanding: int = 0
    fills_status: LookupStatus = LookupStatus.FOUND
    balance_status: LookupStatus = LookupStatus.FOUND
    status: PrescriptionStatus = PrescriptionStatus.UNKNOWN


class HolderPrescription(BaseModel):
    """An outstanding balance at a holder, joined to its definition"""
    model_config = ConfigDict(frozen=True)

    asset_id: str
    amount: int
    definition: Optional[PrescriptionDefinition] = None
    raw_definition: Dict[str, Any] = {}
    definition_status: LookupStatus = LookupStatus.FOUND


def derive_status(
    total_issued: Optional[int],
    total_filled: int,
    outstanding: int,
    fills_status: LookupStatus,
    balance_status: LookupStatus,
) -> PrescriptionStatus:
    """Place a prescription in Outstanding -> PartiallyFilled -> FullyFilled"""
    if total_issued is None or LookupStatus.QUERY_FAILED in (fills_status, balance_status):
        return PrescriptionStatus.UNKNOWN

    if balance_status == LookupStatus.NOT_FOUND:
        # No balance record: fully filled, or never held where we looked
        if total_filled >= total_issued:
            return PrescriptionStatus.FULLY_FILLED
        return PrescriptionStatus.UNKNOWN

    if total_filled + outstanding != total_issued:
        return PrescriptionStatus.UNKNOWN
    if total_filled == 0:
        return PrescriptionStatus.OUTSTANDING
    return PrescriptionStatus.PARTIALLY_FILLED


__all__ = [
    "FillRequest",
    "FillResult",
    "HolderPrescription",
    "IssuanceResult",
    "IssueRequest",
    "PatientHistoryEntry",
    "PrescriptionDefinition",
    "PrescriptionStatus",
    "derive_status",
]
