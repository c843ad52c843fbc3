import pytest

from rxledger.core.exceptions import LedgerRejected, LedgerUnavailable, ValidationError
from rxledger.domain.prescriptions.models import PrescriptionDefinition
from rxledger.domain.prescriptions.service import PrescriptionService
from rxledger.infrastructure.ledger.base import (
    INPUT_ISSUE,
    OUTPUT_CONTROL,
    AssetFilter,
    BalanceFilter,
    SigningKey,
    TransactionFilter,
)

PHARMACY = "RiteMart"


def test_issue_creates_asset_with_definition(service: PrescriptionService, ledger, prescription, issuer_key):
    """Issuing stores the clinical definition on a new asset"""
    result = service.issue(prescription, issuer_key, PHARMACY)

    assets = list(ledger.query_assets(AssetFilter(asset_id=result.asset_id)))
    assert len(assets) == 1
    assert assets[0].definition == prescription.to_ledger_definition()
    assert assets[0].keys == [{"root_xpub": issuer_key.xpub}]


def test_issue_transfers_all_units_to_holder(service: PrescriptionService, ledger, prescription, issuer_key):
    """Every issued unit lands at the pharmacy, none stay with the issuer"""
    result = service.issue(prescription, issuer_key, PHARMACY)

    assert result.total_issued == 90
    assert result.holder == PHARMACY

    balances = list(ledger.query_balances(
        BalanceFilter(asset_id=result.asset_id, sum_by=["account_alias"])
    ))
    assert [(b.sum_by["account_alias"], b.amount) for b in balances] == [(PHARMACY, 90)]


def test_issue_records_one_issuance_transaction(service: PrescriptionService, ledger, prescription, issuer_key):
    result = service.issue(prescription, issuer_key, PHARMACY)

    transactions = list(ledger.query_transactions(TransactionFilter(input_asset_id=result.asset_id)))
    assert len(transactions) == 1
    tx = transactions[0]
    assert tx.id == result.transaction_id
    assert [(i.type, i.amount) for i in tx.inputs] == [(INPUT_ISSUE, 90)]
    assert [(o.type, o.amount, o.account_alias) for o in tx.outputs] == [(OUTPUT_CONTROL, 90, PHARMACY)]


@pytest.mark.parametrize("quantity,refills,expected", [
    (1, 0, 1),
    (30, 2, 90),
    (14, 5, 84),
])
def test_issue_amount_follows_refills(service, ledger, sample_prescription_data, issuer_key, quantity, refills, expected):
    sample_prescription_data.update(quantity=quantity, refills=refills)
    definition = PrescriptionDefinition.create(**sample_prescription_data)

    result = service.issue(definition, issuer_key, PHARMACY)

    assert result.total_issued == expected
    balances = list(ledger.query_balances(BalanceFilter(account_alias=PHARMACY)))
    assert [b.amount for b in balances] == [expected]


def test_issue_requires_holder(service: PrescriptionService, ledger, prescription, issuer_key):
    """Validation happens before anything reaches the ledger"""
    with pytest.raises(ValidationError):
        service.issue(prescription, issuer_key, "  ")

    assert list(ledger.query_assets(AssetFilter())) == []


def test_issue_each_call_creates_new_asset(service: PrescriptionService, prescription, issuer_key):
    first = service.issue(prescription, issuer_key, PHARMACY)
    second = service.issue(prescription, issuer_key, PHARMACY)
    assert first.asset_id != second.asset_id


def test_issue_propagates_ledger_rejection(flaky_ledger, prescription, issuer_key, monkeypatch):
    service = PrescriptionService(flaky_ledger)

    def reject(template):
        raise LedgerRejected(message="authority mismatch")

    monkeypatch.setattr(flaky_ledger, "submit_transaction", reject)

    with pytest.raises(LedgerRejected):
        service.issue(prescription, SigningKey(xpub="xpub-other"), PHARMACY)


def test_issue_stops_when_asset_creation_fails(flaky_ledger, ledger, prescription, issuer_key, monkeypatch):
    service = PrescriptionService(flaky_ledger)
    calls = []

    def unavailable(definition, root_xpubs, quorum=1):
        raise LedgerUnavailable(message="ledger unreachable")

    monkeypatch.setattr(flaky_ledger, "create_asset", unavailable)
    monkeypatch.setattr(flaky_ledger, "build_transaction", lambda builder: calls.append("build"))
    monkeypatch.setattr(flaky_ledger, "submit_transaction", lambda template: calls.append("submit"))

    with pytest.raises(LedgerUnavailable):
        service.issue(prescription, issuer_key, PHARMACY)

    assert calls == []
    assert list(ledger.query_transactions(TransactionFilter())) == []
