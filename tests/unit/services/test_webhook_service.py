"""Tests for rest-hook notification ingestion."""

import pytest

from ehr_onboarding.core.exceptions import ConnectionNotFoundError
from ehr_onboarding.models.ehr_audit_log import EhrAuditLog
from ehr_onboarding.models.ehr_connection import EhrConnection
from ehr_onboarding.services.ehr_audit_service import RequestContext
from ehr_onboarding.services.webhook_service import WebhookService
from tests.mocks.fhir_server import BASE_URL, TEST_PATIENT, TOKEN_URL

CONTEXT = RequestContext(user_id="ehr-callback")


@pytest.fixture
def connection(db_session):
    """A saved connection to receive notifications for."""
    record = EhrConnection(
        hospital_id="hosp-1",
        site_name="General Hospital",
        ehr_vendor="Epic",
        fhir_base_url=BASE_URL,
        token_url=TOKEN_URL,
        client_type="system",
        client_id="client-1",
        scopes=["system/Patient.read"],
        status="active",
        created_by="operator-7",
    )
    db_session.add(record)
    db_session.commit()
    return record


@pytest.mark.audit_required
class TestWebhookService:
    """Storing and processing inbound events."""

    def test_receive_stores_event(self, db_session, connection):
        service = WebhookService(db_session)

        event = service.receive(connection.id, TEST_PATIENT, CONTEXT)

        assert event.event_type == "Patient"
        assert event.resource_type == "Patient"
        assert event.resource_id == "test-123"
        assert event.processed is False
        assert event.payload == TEST_PATIENT
        (entry,) = db_session.query(EhrAuditLog).all()
        assert entry.action == "webhook_received"
        assert entry.connection_id == connection.id

    def test_payload_without_resource_type(self, db_session, connection):
        event = WebhookService(db_session).receive(connection.id, {"foo": 1}, CONTEXT)

        assert event.event_type == "unknown"
        assert event.resource_id is None

    def test_unknown_connection(self, db_session):
        with pytest.raises(ConnectionNotFoundError):
            WebhookService(db_session).receive("missing", TEST_PATIENT, CONTEXT)

    def test_disconnected_connection(self, db_session, connection):
        connection.status = "disconnected"
        db_session.commit()

        with pytest.raises(ConnectionNotFoundError):
            WebhookService(db_session).receive(connection.id, TEST_PATIENT, CONTEXT)
        assert db_session.query(EhrAuditLog).count() == 0

    def test_processing_lifecycle(self, db_session, connection):
        service = WebhookService(db_session)
        event = service.receive(connection.id, TEST_PATIENT, CONTEXT)

        assert [e.id for e in service.pending_events(connection.id)] == [event.id]

        service.mark_processed(event.id, error_message="mapping failed")
        assert event.retry_count == 1
        assert event.processed is False
        assert service.pending_events(connection.id) != []

        service.mark_processed(event.id)
        assert event.processed is True
        assert event.processed_at is not None
        assert event.error_message is None
        assert service.pending_events(connection.id) == []

    def test_mark_unknown_event(self, db_session):
        with pytest.raises(ValueError):
            WebhookService(db_session).mark_processed("missing")
