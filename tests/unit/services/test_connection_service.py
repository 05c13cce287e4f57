"""Tests for the EHR connection lifecycle service."""

import json

import pytest

from ehr_onboarding.core.exceptions import (
    ConfigurationError,
    ConnectionNotFoundError,
    InvalidStatusTransitionError,
)
from ehr_onboarding.healthcare.connection_config import ConnectionStatus
from ehr_onboarding.healthcare.validation_results import (
    AggregateValidationResult,
    ProbeResult,
)
from ehr_onboarding.models.ehr_audit_log import EhrAuditLog
from ehr_onboarding.models.ehr_connection import EhrConnection
from ehr_onboarding.schemas.connections import (
    ConnectionCreate,
    ConnectionUpdate,
    MappingCreate,
)
from ehr_onboarding.services.connection_service import (
    ConnectionService,
    can_transition,
    status_after_validation,
)
from ehr_onboarding.services.ehr_audit_service import (
    EhrAuditService,
    RequestContext,
)
from tests.mocks.fhir_server import CLIENT_SECRET, TOKEN_URL, fhir_url

CONTEXT = RequestContext(user_id="operator-7", ip_address="10.0.0.1")


def _audit_actions(db_session, connection_id):
    trail = EhrAuditService(db_session).list_for_connection(connection_id)
    return [entry.action for entry in trail]


def _result(capability_ok: bool = True, oauth_ok: bool = True):
    return AggregateValidationResult(
        capability=ProbeResult.success("ok") if capability_ok else ProbeResult.error("x"),
        oauth=ProbeResult.success("ok") if oauth_ok else ProbeResult.error("x"),
        test_patient=ProbeResult.success("ok"),
        subscription=ProbeResult.success("ok"),
    )


@pytest.fixture
def service(db_session, codec, validator, settings):
    """Connection service against the stub EHR."""
    return ConnectionService(db_session, codec, validator, settings)


@pytest.fixture
def create_data(connection_payload):
    """Validated submission."""
    return ConnectionCreate.model_validate(connection_payload)


class TestStatusPolicy:
    """Pure lifecycle rules."""

    @pytest.mark.parametrize(
        "current,expected",
        [
            (ConnectionStatus.PENDING, ConnectionStatus.VALIDATED),
            (ConnectionStatus.ERROR, ConnectionStatus.VALIDATED),
            (ConnectionStatus.VALIDATED, ConnectionStatus.VALIDATED),
            (ConnectionStatus.ACTIVE, ConnectionStatus.ACTIVE),
        ],
    )
    def test_passing_run(self, current, expected):
        assert status_after_validation(current, _result()) == expected

    @pytest.mark.parametrize(
        "current",
        [
            ConnectionStatus.PENDING,
            ConnectionStatus.VALIDATED,
            ConnectionStatus.ACTIVE,
            ConnectionStatus.ERROR,
        ],
    )
    def test_failing_run(self, current):
        assert (
            status_after_validation(current, _result(oauth_ok=False))
            == ConnectionStatus.ERROR
        )

    def test_only_validated_may_activate(self):
        assert can_transition(ConnectionStatus.VALIDATED, ConnectionStatus.ACTIVE)
        assert not can_transition(ConnectionStatus.PENDING, ConnectionStatus.ACTIVE)
        assert not can_transition(ConnectionStatus.ERROR, ConnectionStatus.ACTIVE)

    def test_disconnected_is_terminal(self):
        for target in ConnectionStatus:
            assert not can_transition(ConnectionStatus.DISCONNECTED, target)


@pytest.mark.audit_required
class TestConnectionCommands:
    """Create, update, activate, disconnect."""

    def test_create_stores_encrypted_secret(self, service, create_data, codec, db_session):
        connection = service.create_connection(create_data, CONTEXT)

        assert connection.status == ConnectionStatus.PENDING.value
        assert connection.created_by == "operator-7"
        assert connection.client_secret != CLIENT_SECRET
        assert codec.decrypt(connection.client_secret) == CLIENT_SECRET
        assert _audit_actions(db_session, connection.id) == ["connect"]

    def test_audit_details_never_contain_secret(self, service, create_data, db_session):
        connection = service.create_connection(create_data, CONTEXT)
        service.update_connection(
            connection.id,
            ConnectionUpdate(client_secret="rotated-secret"),
            CONTEXT,
        )

        details = [entry.details for entry in db_session.query(EhrAuditLog)]
        serialised = json.dumps(details)
        assert CLIENT_SECRET not in serialised
        assert "rotated-secret" not in serialised
        assert {"updatedFields": ["client_secret"]} in details

    def test_update_ignores_nulls_on_required_fields(
        self, service, create_data, codec
    ):
        connection = service.create_connection(create_data, CONTEXT)

        updated = service.update_connection(
            connection.id,
            ConnectionUpdate(site_name=None, test_patient_id="other-patient"),
            CONTEXT,
        )

        assert updated.site_name == "General Hospital"
        assert updated.test_patient_id == "other-patient"
        assert codec.decrypt(updated.client_secret) == CLIENT_SECRET

    def test_activate_requires_validated(self, service, create_data, db_session):
        connection = service.create_connection(create_data, CONTEXT)

        with pytest.raises(InvalidStatusTransitionError):
            service.activate_connection(connection.id, CONTEXT)

        assert connection.status == ConnectionStatus.PENDING.value
        assert _audit_actions(db_session, connection.id) == ["connect"]

    def test_disconnected_connection_is_gone(self, service, create_data, db_session):
        connection = service.create_connection(create_data, CONTEXT)

        service.disconnect_connection(connection.id, CONTEXT)

        assert db_session.get(EhrConnection, connection.id).status == "disconnected"
        with pytest.raises(ConnectionNotFoundError):
            service.get_connection(connection.id)
        with pytest.raises(ConnectionNotFoundError):
            service.disconnect_connection(connection.id, CONTEXT)
        assert service.list_connections("hosp-1") == []
        assert _audit_actions(db_session, connection.id) == ["connect", "disconnect"]

    def test_unknown_connection(self, service):
        with pytest.raises(ConnectionNotFoundError) as exc_info:
            service.get_connection("missing")

        assert exc_info.value.code == "CONNECTION_NOT_FOUND"

    def test_list_is_scoped_to_hospital(self, service, create_data):
        service.create_connection(create_data, CONTEXT)
        other = create_data.model_copy(update={"hospital_id": "hosp-2"})
        service.create_connection(other, CONTEXT)

        assert [c.hospital_id for c in service.list_connections("hosp-1")] == ["hosp-1"]

    def test_mappings(self, service, create_data):
        connection = service.create_connection(create_data, CONTEXT)

        service.create_mapping(
            connection.id,
            MappingCreate(
                mapping_name="Birth date",
                local_field="dob",
                fhir_resource="Patient",
                fhir_path="Patient.birthDate",
            ),
        )

        (mapping,) = service.list_mappings(connection.id)
        assert mapping.fhir_path == "Patient.birthDate"
        assert mapping.is_active


@pytest.mark.asyncio
@pytest.mark.audit_required
class TestConnectionValidation:
    """Validation before and after saving."""

    async def test_transient_validation_is_audited_as_temp(
        self, service, create_data, db_session
    ):
        outcome = await service.validate_transient(create_data, CONTEXT)

        assert outcome.results.passed
        assert outcome.status is None
        assert db_session.query(EhrConnection).count() == 0
        (entry,) = db_session.query(EhrAuditLog).all()
        assert entry.connection_id == "temp"
        assert entry.action == "validate"
        assert entry.user_id == "operator-7"
        assert CLIENT_SECRET not in json.dumps(entry.details)
        assert f"client_secret={CLIENT_SECRET}" in outcome.curl_snippets["oauth"]

    async def test_passing_run_validates_then_activation_is_explicit(
        self, service, create_data, db_session
    ):
        connection = service.create_connection(create_data, CONTEXT)

        outcome = await service.validate_persisted(connection.id, CONTEXT)

        assert outcome.status == ConnectionStatus.VALIDATED
        assert connection.status == "validated"
        assert connection.last_validated is not None
        assert connection.validation_results["testPatient"]["status"] == "success"

        await service.validate_persisted(connection.id, CONTEXT)
        assert connection.status == "validated"

        service.activate_connection(connection.id, CONTEXT)
        assert connection.status == "active"
        assert _audit_actions(db_session, connection.id) == [
            "connect",
            "validate",
            "validate",
            "activate",
        ]

    async def test_failing_run_moves_to_error(
        self, service, create_data, fhir_server
    ):
        connection = service.create_connection(create_data, CONTEXT)
        fhir_server.respond(
            "POST", TOKEN_URL, status_code=401, json={"error": "invalid_client"}
        )

        outcome = await service.validate_persisted(connection.id, CONTEXT)

        assert outcome.status == ConnectionStatus.ERROR
        assert connection.status == "error"
        assert connection.validation_results["oauth"]["status"] == "error"

    async def test_active_connection_drops_to_error(
        self, service, create_data, fhir_server
    ):
        connection = service.create_connection(create_data, CONTEXT)
        await service.validate_persisted(connection.id, CONTEXT)
        service.activate_connection(connection.id, CONTEXT)

        fhir_server.respond("GET", fhir_url("metadata"), status_code=500, text="down")
        await service.validate_persisted(connection.id, CONTEXT)

        assert connection.status == "error"

    async def test_results_replace_previous_run(
        self, service, create_data, fhir_server
    ):
        connection = service.create_connection(create_data, CONTEXT)
        fhir_server.respond("GET", fhir_url("metadata"), status_code=500, text="down")
        await service.validate_persisted(connection.id, CONTEXT)

        fhir_server.respond(
            "GET",
            fhir_url("metadata"),
            json={"resourceType": "CapabilityStatement", "fhirVersion": "4.0.1"},
        )
        await service.validate_persisted(connection.id, CONTEXT)

        assert connection.validation_results["capability"]["status"] == "warning"
        assert connection.status == "validated"

    async def test_disconnected_connection_cannot_be_validated(
        self, service, create_data, fhir_server
    ):
        connection = service.create_connection(create_data, CONTEXT)
        service.disconnect_connection(connection.id, CONTEXT)

        with pytest.raises(ConnectionNotFoundError):
            await service.validate_persisted(connection.id, CONTEXT)
        assert fhir_server.requests == []

    async def test_corrupt_stored_configuration(
        self, service, create_data, db_session, fhir_server
    ):
        connection = service.create_connection(create_data, CONTEXT)
        connection.scopes = []
        db_session.commit()

        with pytest.raises(ConfigurationError) as exc_info:
            await service.validate_persisted(connection.id, CONTEXT)

        assert "scopes" in exc_info.value.message
        assert fhir_server.requests == []
        assert connection.status == "pending"
        assert _audit_actions(db_session, connection.id) == ["connect", "validate"]
        (entry,) = EhrAuditService(db_session).list_for_connection(connection.id)[1:]
        assert entry.details["passed"] is False
        assert "scopes" in entry.details["error"]
