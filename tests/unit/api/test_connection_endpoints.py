"""
Test suite for EHR connection REST API endpoints.

The remote EHR is the in-process stub server; the database is an in-memory
SQLite session shared with the test.
"""

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from ehr_onboarding.api.dependencies import get_codec, get_validator
from ehr_onboarding.core.database import get_db
from ehr_onboarding.main import app
from ehr_onboarding.models.ehr_audit_log import EhrAuditLog
from ehr_onboarding.models.ehr_connection import EhrConnection
from ehr_onboarding.models.webhook_event import WebhookEvent
from tests.mocks.fhir_server import BASE_URL, CLIENT_SECRET, TOKEN_URL


@pytest.fixture(scope="function")
def client(db_session, codec, validator):
    """Create test client with database and EHR dependency overrides."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_codec] = lambda: codec
    app.dependency_overrides[get_validator] = lambda: validator
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture
def created(client, connection_payload):
    """A saved connection, as returned by the API."""
    response = client.post("/api/connections", json=connection_payload)
    assert response.status_code == status.HTTP_201_CREATED
    return response.json()


class TestConnectionEndpoints:
    """CRUD and lifecycle over HTTP."""

    def test_validate_before_save(self, client, connection_payload, db_session):
        response = client.post(
            "/api/connections/validate",
            json=connection_payload,
            headers={"X-User-Id": "operator-7"},
        )

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["message"] == "Connection validation completed"
        results = body["validationResults"]
        assert {k: v["status"] for k, v in results.items()} == {
            "capability": "success",
            "oauth": "success",
            "testPatient": "success",
            "subscription": "success",
        }
        assert set(body["curlSnippets"]) == {"capability", "oauth", "patient"}

        (entry,) = db_session.query(EhrAuditLog).all()
        assert entry.connection_id == "temp"
        assert entry.user_id == "operator-7"

    def test_create_never_returns_secret(self, client, created):
        assert created["status"] == "pending"
        assert created["hasClientSecret"] is True
        assert created["fhirBaseUrl"] == BASE_URL + "/"
        assert "clientSecret" not in created
        assert CLIENT_SECRET not in str(created)

        fetched = client.get(f"/api/connections/{created['id']}").json()
        assert CLIENT_SECRET not in str(fetched)
        assert fetched["id"] == created["id"]

    def test_create_rejects_invalid_payload(self, client, connection_payload):
        connection_payload["fhirBaseUrl"] = "ftp://ehr.example.org"
        connection_payload["scopes"] = []

        response = client.post("/api/connections", json=connection_payload)

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_list_by_hospital(self, client, created):
        response = client.get("/api/connections", params={"hospitalId": "hosp-1"})

        assert [c["id"] for c in response.json()] == [created["id"]]
        assert client.get("/api/connections", params={"hospitalId": "x"}).json() == []

    def test_update(self, client, created):
        response = client.patch(
            f"/api/connections/{created['id']}", json={"siteName": "North Campus"}
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["siteName"] == "North Campus"

    def test_revalidate_then_activate(self, client, created):
        connection_id = created["id"]

        response = client.post(f"/api/connections/{connection_id}/validate")
        assert response.status_code == status.HTTP_200_OK
        assert "client_secret=" in response.json()["curlSnippets"]["oauth"]

        fetched = client.get(f"/api/connections/{connection_id}").json()
        assert fetched["status"] == "validated"
        assert fetched["validationResults"]["oauth"]["status"] == "success"
        assert fetched["lastValidated"] is not None

        response = client.post(f"/api/connections/{connection_id}/activate")
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "active"

    def test_activate_pending_is_conflict(self, client, created):
        response = client.post(f"/api/connections/{created['id']}/activate")

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["error_code"] == "INVALID_STATUS_TRANSITION"

    def test_failed_validation_sets_error(self, client, created, fhir_server):
        fhir_server.respond(
            "POST", TOKEN_URL, status_code=401, json={"error": "invalid_client"}
        )

        response = client.post(f"/api/connections/{created['id']}/validate")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["validationResults"]["oauth"]["status"] == "error"
        fetched = client.get(f"/api/connections/{created['id']}").json()
        assert fetched["status"] == "error"

    def test_corrupt_record_is_unprocessable(self, client, created, db_session):
        record = db_session.get(EhrConnection, created["id"])
        record.scopes = []
        db_session.commit()

        response = client.post(f"/api/connections/{created['id']}/validate")

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert response.json()["error_code"] == "CONFIGURATION_ERROR"

    def test_disconnect(self, client, created):
        connection_id = created["id"]

        response = client.delete(f"/api/connections/{connection_id}")
        assert response.status_code == status.HTTP_204_NO_CONTENT

        response = client.get(f"/api/connections/{connection_id}")
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["error_code"] == "CONNECTION_NOT_FOUND"
        assert (
            client.post(f"/api/connections/{connection_id}/validate").status_code
            == status.HTTP_404_NOT_FOUND
        )

    def test_unknown_connection(self, client):
        response = client.get("/api/connections/does-not-exist")

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_mappings(self, client, created):
        url = f"/api/connections/{created['id']}/mappings"

        response = client.post(
            url,
            json={
                "mappingName": "Birth date",
                "localField": "dob",
                "fhirResource": "Patient",
                "fhirPath": "Patient.birthDate",
            },
        )
        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["connectionId"] == created["id"]

        assert [m["fhirPath"] for m in client.get(url).json()] == ["Patient.birthDate"]


class TestWebhookEndpoint:
    """Inbound rest-hook notifications."""

    def test_receive(self, client, created, db_session):
        response = client.post(
            f"/api/webhooks/fhir/{created['id']}",
            json={"resourceType": "Observation", "id": "obs-1"},
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"message": "Webhook received successfully"}
        (event,) = db_session.query(WebhookEvent).all()
        assert event.resource_type == "Observation"

    def test_unknown_connection(self, client):
        response = client.post(
            "/api/webhooks/fhir/missing", json={"resourceType": "Patient"}
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND


class TestHealthEndpoints:
    """Operational endpoints."""

    def test_health(self, client):
        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["database"] is True

    def test_metrics(self, client, created):
        client.post(f"/api/connections/{created['id']}/validate")

        response = client.get("/metrics")

        assert response.status_code == status.HTTP_200_OK
        assert "ehr_probe_results_total" in response.text
