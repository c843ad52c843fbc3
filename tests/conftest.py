import pytest
from typing import Dict, Generator, Set, Tuple
from fastapi.testclient import TestClient

from rxledger.core.config import Settings
from rxledger.core.exceptions import LedgerUnavailable
from rxledger.domain.prescriptions.models import PrescriptionDefinition
from rxledger.domain.prescriptions.service import PrescriptionService
from rxledger.infrastructure.ledger.base import SigningKey
from rxledger.infrastructure.ledger.local import LocalLedger
from rxledger.main import create_app


# In-memory database, one per test
TEST_DATABASE_URL = "sqlite://"

ISSUER_XPUB = "xpub-provider-fredericks"
PHARMACY = "RiteMart"


class FlakyLedger:
    """Wraps a ledger and fails or hides chosen reads for chosen assets"""

    def __init__(self, ledger: LocalLedger):
        self.ledger = ledger
        self.failures: Set[Tuple[str, str]] = set()
        self.hidden: Set[str] = set()

    def fail(self, operation: str, asset_id: str) -> None:
        self.failures.add((operation, asset_id))

    def hide(self, asset_id: str) -> None:
        """Asset lookups by this id return no rows"""
        self.hidden.add(asset_id)

    def _check(self, operation: str, asset_id):
        if (operation, asset_id) in self.failures:
            raise LedgerUnavailable(message=f"{operation} unavailable for {asset_id}")

    def create_asset(self, definition, root_xpubs, quorum=1):
        return self.ledger.create_asset(definition, root_xpubs, quorum)

    def build_transaction(self, builder):
        return self.ledger.build_transaction(builder)

    def sign(self, template, credential):
        return self.ledger.sign(template, credential)

    def submit_transaction(self, template):
        return self.ledger.submit_transaction(template)

    def query_assets(self, filter):
        self._check("assets", filter.asset_id)
        if filter.asset_id in self.hidden:
            return iter([])
        return self.ledger.query_assets(filter)

    def query_transactions(self, filter):
        self._check("transactions", filter.input_asset_id)
        return self.ledger.query_transactions(filter)

    def query_balances(self, filter):
        self._check("balances", filter.asset_id)
        return self.ledger.query_balances(filter)

    def close(self):
        self.ledger.close()


@pytest.fixture(scope="function")
def ledger() -> Generator[LocalLedger, None, None]:
    """Fresh local ledger on an in-memory database"""
    ledger = LocalLedger.from_url(TEST_DATABASE_URL)
    try:
        yield ledger
    finally:
        ledger.close()


@pytest.fixture(scope="function")
def flaky_ledger(ledger: LocalLedger) -> FlakyLedger:
    return FlakyLedger(ledger)


@pytest.fixture(scope="function")
def issuer_key() -> SigningKey:
    return SigningKey(xpub=ISSUER_XPUB)


@pytest.fixture(scope="function")
def service(ledger: LocalLedger) -> PrescriptionService:
    return PrescriptionService(ledger)


@pytest.fixture(scope="function")
def sample_prescription_data() -> Dict:
    """Sample prescription: 30 units, 2 refills"""
    return {
        "prescriber_id": "dr-fredericks",
        "patient_id": "patient-001",
        "medication": "Amoxicillin",
        "strength": "500mg",
        "route": "oral",
        "frequency": "three times daily",
        "refills": 2,
        "quantity": 30,
    }


@pytest.fixture(scope="function")
def prescription(sample_prescription_data: Dict) -> PrescriptionDefinition:
    return PrescriptionDefinition.create(**sample_prescription_data)


@pytest.fixture(scope="function")
def settings() -> Settings:
    return Settings(
        LEDGER_BACKEND="local",
        LEDGER_DATABASE_URL=TEST_DATABASE_URL,
        ISSUER_XPUB=ISSUER_XPUB,
    )


@pytest.fixture(scope="function")
def client(settings: Settings, ledger: LocalLedger) -> Generator[TestClient, None, None]:
    """API client bound to the test ledger"""
    app = create_app(settings=settings, ledger=ledger)
    with TestClient(app) as test_client:
        yield test_client


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "ledger: mark test as exercising a ledger adapter"
    )
    config.addinivalue_line(
        "markers", "api: mark test as exercising the HTTP surface"
    )
