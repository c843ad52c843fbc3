import pytest
from fastapi.testclient import TestClient

from rxledger.core.config import Settings
from rxledger.main import create_app

pytestmark = pytest.mark.api

API = "/api/v1"


@pytest.fixture
def prescribe_payload(sample_prescription_data) -> dict:
    return {**sample_prescription_data, "pharmacy": "RiteMart"}


def _prescribe(client: TestClient, payload: dict) -> dict:
    response = client.post(f"{API}/provider/prescriptions", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_health_check(client: TestClient):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "ledger_backend": "local"}


def test_prescribe(client: TestClient, prescribe_payload):
    data = _prescribe(client, prescribe_payload)
    assert data["total_issued"] == 90
    assert data["holder"] == "RiteMart"
    assert data["asset_id"]
    assert data["transaction_id"]


def test_prescribe_invalid_quantity(client: TestClient, prescribe_payload):
    prescribe_payload["quantity"] = 0
    response = client.post(f"{API}/provider/prescriptions", json=prescribe_payload)
    assert response.status_code == 422
    body = response.json()
    assert body["error_code"] == "VALIDATION_ERROR"
    assert "body.quantity" in body["details"]["fields"]


def test_prescribe_without_issuer_key(ledger, prescribe_payload):
    app = create_app(settings=Settings(LEDGER_DATABASE_URL="sqlite://"), ledger=ledger)
    with TestClient(app) as client:
        response = client.post(f"{API}/provider/prescriptions", json=prescribe_payload)

    assert response.status_code == 422
    assert response.json()["error_code"] == "VALIDATION_ERROR"
    assert response.json()["details"]["field"] == "issuer_xpub"


def test_fill_and_view_workflow(client: TestClient, prescribe_payload):
    issued = _prescribe(client, prescribe_payload)

    holdings = client.get(f"{API}/pharmacy/RiteMart/prescriptions").json()
    assert [(h["asset_id"], h["amount"]) for h in holdings] == [(issued["asset_id"], 90)]
    assert holdings[0]["definition"]["medication"] == "Amoxicillin"

    for _ in range(2):
        response = client.post(
            f"{API}/pharmacy/RiteMart/fills",
            json={"asset_id": issued["asset_id"], "amount": 30},
        )
        assert response.status_code == 201, response.text

    history = client.get(f"{API}/provider/patients/patient-001/prescriptions").json()
    assert len(history) == 1
    assert history[0]["total_filled"] == 60
    assert history[0]["outstanding"] == 30
    assert history[0]["fills"] == [30, 30]
    assert history[0]["status"] == "PARTIALLY_FILLED"


def test_overfill_returns_conflict(client: TestClient, prescribe_payload):
    issued = _prescribe(client, prescribe_payload)

    response = client.post(
        f"{API}/pharmacy/RiteMart/fills",
        json={"asset_id": issued["asset_id"], "amount": 91},
    )

    assert response.status_code == 409
    body = response.json()
    assert body["error_code"] == "INSUFFICIENT_BALANCE"
    assert body["details"]["available"] == 90


def test_fill_requires_positive_amount(client: TestClient, prescribe_payload):
    issued = _prescribe(client, prescribe_payload)
    response = client.post(
        f"{API}/pharmacy/RiteMart/fills",
        json={"asset_id": issued["asset_id"], "amount": 0},
    )
    assert response.status_code == 422
    assert response.json()["error_code"] == "VALIDATION_ERROR"


def test_unknown_patient_has_empty_history(client: TestClient):
    response = client.get(f"{API}/provider/patients/nobody/prescriptions")
    assert response.status_code == 200
    assert response.json() == []
