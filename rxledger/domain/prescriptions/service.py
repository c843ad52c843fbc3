from typing import Iterator, Optional
import logging

from rxledger.core.exceptions import LedgerError, LookupStatus, ValidationError
from rxledger.domain.prescriptions.models import (
    FillRequest,
    FillResult,
    HolderPrescription,
    IssuanceResult,
    IssueRequest,
    PatientHistoryEntry,
    PrescriptionDefinition,
    derive_status,
)
from rxledger.domain.prescriptions.repository import PrescriptionLedgerRepository
from rxledger.infrastructure.ledger.base import (
    Asset,
    LedgerService,
    SigningKey,
    TransactionBuilder,
)

logger = logging.getLogger(__name__)


def parse_definition(asset: Asset) -> Optional[PrescriptionDefinition]:
    """Read a prescription back from an asset definition, or None if it is not one"""
    try:
        return PrescriptionDefinition.from_ledger_definition(asset.definition)
    except ValidationError as e:
        logger.warning(f"Asset {asset.id} does not carry a valid prescription definition: {e.details}")
        return None


class IssuanceEngine:
    """Turns a prescription into an asset and issues all of its units to a holder"""

    def __init__(self, repo: PrescriptionLedgerRepository):
        self.repo = repo

    def issue(
        self,
        definition: PrescriptionDefinition,
        issuer: SigningKey,
        holder: str,
    ) -> IssuanceResult:
        request = IssueRequest.create(definition=definition, holder=holder)
        total = request.definition.total_issued

        asset = self.repo.create_asset(request.definition.to_ledger_definition(), issuer)

        # Issue and hand over in one transaction so the units never sit unassigned
        builder = (
            TransactionBuilder()
            .issue(asset_id=asset.id, amount=total)
            .control_with_account(account_alias=request.holder, asset_id=asset.id, amount=total)
        )
        transaction_id = self.repo.submit(builder, credential=issuer)

        logger.info(
            f"Issued {total} units of prescription {asset.id} "
            f"for patient {request.definition.patient_id} to {request.holder}"
        )
        return IssuanceResult(
            asset_id=asset.id,
            transaction_id=transaction_id,
            total_issued=total,
            holder=request.holder,
        )


class FillEngine:
    """Records a dispensing event by spending and retiring units from a holder"""

    def __init__(self, repo: PrescriptionLedgerRepository):
        self.repo = repo

    def fill(
        self,
        asset_id: str,
        amount: int,
        holder: str,
        credential: Optional[SigningKey] = None,
    ) -> FillResult:
        request = FillRequest.create(asset_id=asset_id, amount=amount, holder=holder)

        # Balance is checked by the ledger at submission, not here
        builder = (
            TransactionBuilder()
            .spend_from_account(account_alias=request.holder, asset_id=request.asset_id, amount=request.amount)
            .retire(asset_id=request.asset_id, amount=request.amount)
        )
        transaction_id = self.repo.submit(builder, credential=credential)

        logger.info(f"{request.holder} filled {request.amount} units of prescription {request.asset_id}")
        return FillResult(
            transaction_id=transaction_id,
            asset_id=request.asset_id,
            amount=request.amount,
            holder=request.holder,
        )


class HistoryReconstructor:
    """Rebuilds every prescription of a patient with its fill state"""

    def __init__(self, repo: PrescriptionLedgerRepository):
        self.repo = repo

    def get_patient_history(self, patient_id: str) -> Iterator[PatientHistoryEntry]:
        if not patient_id or not patient_id.strip():
            raise ValidationError(message="patient_id is required", details={"field": "patient_id"})
        return self._entries(patient_id.strip())

    def _entries(self, patient_id: str) -> Iterator[PatientHistoryEntry]:
        for asset in self.repo.assets_for_patient(patient_id):
            yield self._entry(asset)

    def _entry(self, asset: Asset) -> PatientHistoryEntry:
        definition = parse_definition(asset)
        total_issued = definition.total_issued if definition else None

        try:
            fills = self.repo.retired_amounts(asset.id)
            fills_status = LookupStatus.FOUND if fills else LookupStatus.NOT_FOUND
        except LedgerError as e:
            logger.warning(f"Could not read fills for prescription {asset.id}: {e.message}")
            fills = []
            fills_status = LookupStatus.QUERY_FAILED

        try:
            balances = self.repo.balances_for_asset(asset.id)
            outstanding = sum(balance.amount for balance in balances)
            balance_status = LookupStatus.FOUND if balances else LookupStatus.NOT_FOUND
        except LedgerError as e:
            logger.warning(f"Could not read outstanding balance for prescription {asset.id}: {e.message}")
            outstanding = 0
            balance_status = LookupStatus.QUERY_FAILED

        total_filled = sum(fills)
        return PatientHistoryEntry(
            asset_id=asset.id,
            definition=definition,
            raw_definition=asset.definition,
            total_issued=total_issued,
            fills=fills,
            total_filled=total_filled,
            outstanding=outstanding,
            fills_status=fills_status,
            balance_status=balance_status,
            status=derive_status(total_issued, total_filled, outstanding, fills_status, balance_status),
        )


class HoldingAggregator:
    """Lists the outstanding prescription balances held by one account"""

    def __init__(self, repo: PrescriptionLedgerRepository):
        self.repo = repo

    def get_holder_summary(self, holder: str) -> Iterator[HolderPrescription]:
        if not holder or not holder.strip():
            raise ValidationError(message="holder is required", details={"field": "holder"})
        return self._holdings(holder.strip())

    def _holdings(self, holder: str) -> Iterator[HolderPrescription]:
        for balance in self.repo.balances_for_holder(holder):
            asset_id = balance.asset_id
            if asset_id is None:
                logger.warning(f"Balance for {holder} is not grouped by asset: {balance.sum_by}")
                continue
            yield self._join(asset_id, balance.amount)

    def _join(self, asset_id: str, amount: int) -> HolderPrescription:
        try:
            asset = self.repo.get_asset(asset_id)
        except LedgerError as e:
            logger.warning(f"Could not read definition of prescription {asset_id}: {e.message}")
            return HolderPrescription(
                asset_id=asset_id,
                amount=amount,
                definition_status=LookupStatus.QUERY_FAILED,
            )

        if asset is None:
            return HolderPrescription(
                asset_id=asset_id,
                amount=amount,
                definition_status=LookupStatus.NOT_FOUND,
            )

        return HolderPrescription(
            asset_id=asset_id,
            amount=amount,
            definition=parse_definition(asset),
            raw_definition=asset.definition,
            definition_status=LookupStatus.FOUND,
        )


class PrescriptionService:
    """Caller-facing operations over one ledger"""

    def __init__(self, ledger: LedgerService):
        self.ledger = ledger
        self.repo = PrescriptionLedgerRepository(ledger)
        self.issuance = IssuanceEngine(self.repo)
        self.fills = FillEngine(self.repo)
        self.history = HistoryReconstructor(self.repo)
        self.holdings = HoldingAggregator(self.repo)

    def issue(self, definition: PrescriptionDefinition, issuer: SigningKey, holder: str) -> IssuanceResult:
        return self.issuance.issue(definition, issuer, holder)

    def fill(
        self, asset_id: str, amount: int, holder: str, credential: Optional[SigningKey] = None
    ) -> FillResult:
        return self.fills.fill(asset_id, amount, holder, credential=credential)

    def get_patient_history(self, patient_id: str) -> Iterator[PatientHistoryEntry]:
        return self.history.get_patient_history(patient_id)

    def get_holder_summary(self, holder: str) -> Iterator[HolderPrescription]:
        return self.holdings.get_holder_summary(holder)
