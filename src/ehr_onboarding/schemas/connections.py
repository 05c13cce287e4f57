"""Pydantic schemas for EHR connections, mappings and webhooks.

Field names are snake_case in Python and camelCase on the wire.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic.alias_generators import to_camel

from ehr_onboarding.healthcare.connection_config import ClientType, ConnectionStatus


def _require_http_url(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if not value.startswith(("http://", "https://")):
        raise ValueError("must be an http(s) URL")
    return value


def _require_scopes(value: List[str]) -> List[str]:
    scopes = [scope.strip() for scope in value if scope and scope.strip()]
    if not scopes:
        raise ValueError("at least one scope is required")
    return scopes


class CamelModel(BaseModel):
    """Base schema accepting camelCase or snake_case input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConnectionCreate(CamelModel):
    """Connection parameters submitted by an operator."""

    hospital_id: Optional[str] = None
    site_name: str = Field(min_length=1)
    environment: Literal["test", "production"] = "test"
    ehr_vendor: str = Field(min_length=1)
    ehr_version: Optional[str] = None

    fhir_base_url: str
    authorization_url: Optional[str] = None
    token_url: str

    client_type: ClientType
    client_id: str = Field(min_length=1)
    client_secret: Optional[SecretStr] = None
    jwks_url: Optional[str] = None
    redirect_uri: Optional[str] = None
    scopes: List[str]

    test_patient_id: Optional[str] = None
    webhook_endpoint: Optional[str] = None

    contact_name: Optional[str] = None
    contact_email: Optional[str] = None

    @field_validator(
        "fhir_base_url",
        "authorization_url",
        "token_url",
        "jwks_url",
        "redirect_uri",
        "webhook_endpoint",
    )
    @classmethod
    def validate_urls(cls, v: Optional[str]) -> Optional[str]:
        """Endpoints must be absolute http(s) URLs."""
        return _require_http_url(v)

    @field_validator("scopes")
    @classmethod
    def validate_scopes(cls, v: List[str]) -> List[str]:
        """At least one scope."""
        return _require_scopes(v)


class ConnectionUpdate(CamelModel):
    """Partial update of a connection. Status changes use lifecycle actions."""

    site_name: Optional[str] = None
    environment: Optional[Literal["test", "production"]] = None
    ehr_vendor: Optional[str] = None
    ehr_version: Optional[str] = None
    fhir_base_url: Optional[str] = None
    authorization_url: Optional[str] = None
    token_url: Optional[str] = None
    client_type: Optional[ClientType] = None
    client_id: Optional[str] = None
    client_secret: Optional[SecretStr] = None
    jwks_url: Optional[str] = None
    redirect_uri: Optional[str] = None
    scopes: Optional[List[str]] = None
    test_patient_id: Optional[str] = None
    webhook_endpoint: Optional[str] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None

    @field_validator(
        "fhir_base_url",
        "authorization_url",
        "token_url",
        "jwks_url",
        "redirect_uri",
        "webhook_endpoint",
    )
    @classmethod
    def validate_urls(cls, v: Optional[str]) -> Optional[str]:
        """Endpoints must be absolute http(s) URLs."""
        return _require_http_url(v)

    @field_validator("scopes")
    @classmethod
    def validate_scopes(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        """An update may not clear the scope list."""
        return _require_scopes(v) if v is not None else None


class ConnectionPublic(CamelModel):
    """Connection as returned to callers. The client secret is never included."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    id: str
    hospital_id: str
    site_name: str
    environment: str
    ehr_vendor: str
    ehr_version: Optional[str] = None
    fhir_base_url: str
    authorization_url: Optional[str] = None
    token_url: str
    client_type: ClientType
    client_id: str
    has_client_secret: bool = False
    jwks_url: Optional[str] = None
    redirect_uri: Optional[str] = None
    scopes: List[str]
    test_patient_id: Optional[str] = None
    webhook_endpoint: Optional[str] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    status: ConnectionStatus
    validation_results: Optional[Dict[str, Any]] = None
    last_validated: Optional[datetime] = None
    created_by: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: Any) -> "ConnectionPublic":
        """Redacted view of an EhrConnection row."""
        public = cls.model_validate(record)
        return public.model_copy(update={"has_client_secret": bool(record.client_secret)})


class ValidationResponse(CamelModel):
    """Outcome of a validation request."""

    validation_results: Dict[str, Any]
    curl_snippets: Dict[str, str]
    message: str = "Connection validation completed"


class MappingCreate(CamelModel):
    """New field mapping for a connection."""

    mapping_name: str = Field(min_length=1)
    local_field: str = Field(min_length=1)
    fhir_resource: str = Field(min_length=1)
    fhir_path: str = Field(min_length=1)
    code_system: Optional[str] = None
    transformation_rules: Optional[Dict[str, Any]] = None
    is_active: bool = True


class MappingPublic(CamelModel):
    """Stored field mapping."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    id: str
    connection_id: str
    mapping_name: str
    local_field: str
    fhir_resource: str
    fhir_path: str
    code_system: Optional[str] = None
    transformation_rules: Optional[Dict[str, Any]] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime
