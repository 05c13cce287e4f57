"""Negotiated parameters of one hospital EHR integration.

ConnectionConfig is the in-memory view the validation pipeline works on. It
is built either from a persisted EhrConnection row or from a transient
submission used for pre-save validation. The client secret is only ever held
here in its encrypted form.
"""

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ehr_onboarding.healthcare.validation_results import AggregateValidationResult

TRANSIENT_CONNECTION_ID = "temp"


class ClientType(str, Enum):
    """OAuth client flavour registered with the EHR."""

    SYSTEM = "system"
    SMART = "smart"


class ConnectionStatus(str, Enum):
    """Lifecycle status of a connection."""

    PENDING = "pending"
    VALIDATED = "validated"
    ACTIVE = "active"
    ERROR = "error"
    DISCONNECTED = "disconnected"


class ConnectionConfig(BaseModel):
    """Everything the probes need to talk to a remote FHIR server."""

    model_config = ConfigDict(frozen=True)

    connection_id: str = TRANSIENT_CONNECTION_ID

    # Identity
    site_name: str
    hospital_id: str
    ehr_vendor: str
    ehr_version: Optional[str] = None

    # Endpoints
    fhir_base_url: str
    authorization_url: Optional[str] = None
    token_url: str

    # Credentials
    client_type: ClientType
    client_id: str
    encrypted_client_secret: Optional[str] = Field(default=None, repr=False)

    # Authorization
    scopes: List[str]

    # Optional probes
    test_patient_id: Optional[str] = None
    webhook_endpoint: Optional[str] = None

    status: ConnectionStatus = ConnectionStatus.PENDING
    validation_results: Optional[AggregateValidationResult] = None
    last_validated: Optional[datetime] = None

    @field_validator("fhir_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Probe paths are appended with a single slash."""
        return v.rstrip("/")

    @field_validator("scopes")
    @classmethod
    def validate_scopes(cls, v: List[str]) -> List[str]:
        """At least one scope is always requested."""
        scopes = [scope.strip() for scope in v if scope and scope.strip()]
        if not scopes:
            raise ValueError("at least one scope is required")
        return scopes

    @property
    def is_transient(self) -> bool:
        """Pre-save configurations carry the placeholder id."""
        return self.connection_id == TRANSIENT_CONNECTION_ID

    @property
    def scope_string(self) -> str:
        """Scopes in OAuth2 wire form."""
        return " ".join(self.scopes)

    @classmethod
    def from_record(cls, record: Any) -> "ConnectionConfig":
        """Build a config from a persisted EhrConnection row."""
        stored = record.validation_results
        return cls(
            connection_id=str(record.id),
            site_name=record.site_name,
            hospital_id=record.hospital_id,
            ehr_vendor=record.ehr_vendor,
            ehr_version=record.ehr_version,
            fhir_base_url=record.fhir_base_url,
            authorization_url=record.authorization_url,
            token_url=record.token_url,
            client_type=ClientType(record.client_type),
            client_id=record.client_id,
            encrypted_client_secret=record.client_secret,
            scopes=list(record.scopes or []),
            test_patient_id=record.test_patient_id,
            webhook_endpoint=record.webhook_endpoint,
            status=ConnectionStatus(record.status),
            validation_results=(
                AggregateValidationResult.model_validate(stored) if stored else None
            ),
            last_validated=record.last_validated,
        )
