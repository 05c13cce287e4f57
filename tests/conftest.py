"""Test configuration for the EHR onboarding service.

Sets up an isolated environment (in-memory database, throwaway encryption
key) before the application is imported, and provides the stub FHIR server
used by every probe test.
"""

import os

from cryptography.fernet import Fernet

# Set testing environment BEFORE any application imports
TEST_ENCRYPTION_KEY = Fernet.generate_key().decode()
os.environ["ENVIRONMENT"] = "test"
os.environ["ENCRYPTION_KEY"] = TEST_ENCRYPTION_KEY
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from ehr_onboarding.config import Settings  # noqa: E402
from ehr_onboarding.healthcare.connection_config import (  # noqa: E402
    ClientType,
    ConnectionConfig,
)
from ehr_onboarding.healthcare.connection_validator import (  # noqa: E402
    ConnectionValidator,
)
from ehr_onboarding.models import Base  # noqa: E402
from ehr_onboarding.security.secret_codec import SecretCodec  # noqa: E402
from tests.mocks.fhir_server import (  # noqa: E402
    AUTHORIZE_URL,
    BASE_URL,
    CLIENT_SECRET,
    TEST_PATIENT_ID,
    TOKEN_URL,
    WEBHOOK_URL,
    StubFhirServer,
)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "audit_required: mark test as asserting audit log entries"
    )
    config.addinivalue_line(
        "markers", "phi_encryption: mark test as covering credential encryption"
    )


@pytest.fixture
def settings() -> Settings:
    """Settings with short timeouts and the test key."""
    return Settings(
        environment="test",
        encryption_key=TEST_ENCRYPTION_KEY,
        database_url="sqlite://",
        fhir_request_timeout=5.0,
        oauth_request_timeout=5.0,
        smart_probe_timeout=5.0,
    )


@pytest.fixture
def codec(settings: Settings) -> SecretCodec:
    """Codec bound to the test key."""
    return SecretCodec.from_settings(settings)


@pytest.fixture
def fhir_server() -> StubFhirServer:
    """A remote EHR on which every probe succeeds."""
    return StubFhirServer.healthy()


@pytest.fixture
def validator(codec, settings, fhir_server) -> ConnectionValidator:
    """Validator talking to the stub server."""
    return ConnectionValidator(codec, settings, transport=fhir_server.transport)


@pytest.fixture
def make_config(codec):
    """Factory for connection configs pointing at the stub server."""

    def _make(**overrides) -> ConnectionConfig:
        secret = overrides.pop("client_secret", CLIENT_SECRET)
        values = {
            "connection_id": "conn-1",
            "site_name": "General Hospital",
            "hospital_id": "hosp-1",
            "ehr_vendor": "Epic",
            "ehr_version": "2024",
            "fhir_base_url": BASE_URL,
            "authorization_url": AUTHORIZE_URL,
            "token_url": TOKEN_URL,
            "client_type": ClientType.SYSTEM,
            "client_id": "client-1",
            "encrypted_client_secret": codec.encrypt(secret) if secret else None,
            "scopes": ["system/Patient.read", "system/Observation.read"],
            "test_patient_id": TEST_PATIENT_ID,
            "webhook_endpoint": WEBHOOK_URL,
        }
        values.update(overrides)
        return ConnectionConfig(**values)

    return _make


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh in-memory database session for each test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session_factory = sessionmaker(
        bind=engine, class_=Session, autoflush=False, expire_on_commit=False
    )
    db = session_factory()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def connection_payload():
    """Operator submission for a system client, in wire (camelCase) form."""
    return {
        "hospitalId": "hosp-1",
        "siteName": "General Hospital",
        "environment": "test",
        "ehrVendor": "Epic",
        "ehrVersion": "2024",
        "fhirBaseUrl": BASE_URL + "/",
        "authorizationUrl": AUTHORIZE_URL,
        "tokenUrl": TOKEN_URL,
        "clientType": "system",
        "clientId": "client-1",
        "clientSecret": CLIENT_SECRET,
        "scopes": ["system/Patient.read", "system/Observation.read"],
        "testPatientId": TEST_PATIENT_ID,
        "webhookEndpoint": WEBHOOK_URL,
    }
