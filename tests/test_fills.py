import pytest

from rxledger.core.exceptions import InsufficientBalance, ValidationError
from rxledger.domain.prescriptions.models import PrescriptionStatus
from rxledger.domain.prescriptions.service import PrescriptionService
from rxledger.infrastructure.ledger.base import OUTPUT_RETIRE, BalanceFilter, TransactionFilter

PHARMACY = "RiteMart"


@pytest.fixture
def issued(service: PrescriptionService, prescription, issuer_key):
    """A 90-unit prescription held at the pharmacy"""
    return service.issue(prescription, issuer_key, PHARMACY)


def _history_entry(service: PrescriptionService, patient_id: str, asset_id: str):
    entries = [e for e in service.get_patient_history(patient_id) if e.asset_id == asset_id]
    assert len(entries) == 1
    return entries[0]


def _holding(ledger, asset_id: str):
    return [b.amount for b in ledger.query_balances(BalanceFilter(asset_id=asset_id))]


def test_fill_retires_units(service: PrescriptionService, ledger, issued):
    result = service.fill(issued.asset_id, 30, PHARMACY)

    assert result.amount == 30
    assert result.holder == PHARMACY
    assert _holding(ledger, issued.asset_id) == [60]

    transactions = list(ledger.query_transactions(
        TransactionFilter(input_asset_id=issued.asset_id, output_type=OUTPUT_RETIRE)
    ))
    assert [tx.id for tx in transactions] == [result.transaction_id]


def test_two_fills_leave_one_refill(service: PrescriptionService, issued, prescription):
    """90 issued, 30 + 30 filled: 60 filled and 30 outstanding"""
    service.fill(issued.asset_id, 30, PHARMACY)
    entry = _history_entry(service, prescription.patient_id, issued.asset_id)
    assert (entry.total_filled, entry.outstanding) == (30, 60)

    service.fill(issued.asset_id, 30, PHARMACY)
    entry = _history_entry(service, prescription.patient_id, issued.asset_id)
    assert (entry.total_filled, entry.outstanding) == (60, 30)
    assert entry.fills == [30, 30]
    assert entry.status == PrescriptionStatus.PARTIALLY_FILLED


def test_fully_filled_has_no_balance(service: PrescriptionService, ledger, issued, prescription):
    for _ in range(3):
        service.fill(issued.asset_id, 30, PHARMACY)

    assert _holding(ledger, issued.asset_id) == []

    entry = _history_entry(service, prescription.patient_id, issued.asset_id)
    assert entry.outstanding == 0
    assert entry.total_filled == 90
    assert entry.status == PrescriptionStatus.FULLY_FILLED


@pytest.mark.parametrize("amounts", [
    [90],
    [10, 25, 5, 50],
    [1, 1, 1],
])
def test_outstanding_matches_fill_sequence(service: PrescriptionService, ledger, issued, prescription, amounts):
    for amount in amounts:
        service.fill(issued.asset_id, amount, PHARMACY)

    expected = 90 - sum(amounts)
    entry = _history_entry(service, prescription.patient_id, issued.asset_id)
    assert entry.outstanding == expected
    assert entry.total_filled == sum(amounts)
    assert sum(_holding(ledger, issued.asset_id)) == expected


def test_overfill_rejected_and_balance_unchanged(service: PrescriptionService, ledger, issued):
    service.fill(issued.asset_id, 60, PHARMACY)

    with pytest.raises(InsufficientBalance) as exc_info:
        service.fill(issued.asset_id, 31, PHARMACY)

    assert exc_info.value.details["available"] == 30
    assert _holding(ledger, issued.asset_id) == [30]


def test_fill_from_other_holder_rejected(service: PrescriptionService, ledger, issued):
    with pytest.raises(InsufficientBalance):
        service.fill(issued.asset_id, 1, "CornerDrug")
    assert _holding(ledger, issued.asset_id) == [90]


@pytest.mark.parametrize("amount", [0, -30])
def test_fill_requires_positive_amount(service: PrescriptionService, ledger, issued, amount):
    with pytest.raises(ValidationError):
        service.fill(issued.asset_id, amount, PHARMACY)
    assert _holding(ledger, issued.asset_id) == [90]
