"""Probe results produced by a connection validation run.

Each probe has its own data payload model; ProbeResult.data is a
discriminated union over them so the shape of every step is explicit.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ProbeStatus(str, Enum):
    """Three-valued probe outcome."""

    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class ProbeName(str, Enum):
    """The four probes of a run, in execution order."""

    CAPABILITY = "capability"
    OAUTH = "oauth"
    TEST_PATIENT = "testPatient"
    SUBSCRIPTION = "subscription"


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class CapabilityData(_WireModel):
    """What the server declared in its CapabilityStatement."""

    kind: Literal["capability"] = "capability"
    fhir_version: Optional[str] = None
    publisher: Optional[str] = None
    software_version: Optional[str] = None
    supported_resources: List[str] = Field(default_factory=list)
    missing_resources: List[str] = Field(default_factory=list)


class OAuthData(_WireModel):
    """Token endpoint or authorization endpoint details."""

    kind: Literal["oauth"] = "oauth"
    flow: Literal["system", "smart"]
    token_type: Optional[str] = None
    scope: Optional[str] = None
    expires_in: Optional[int] = None
    authorization_url: Optional[str] = None
    token_url: Optional[str] = None


class PatientData(_WireModel):
    """Minimal demographics of the fetched test patient."""

    kind: Literal["patient"] = "patient"
    id: Optional[str] = None
    display_name: str
    gender: Optional[str] = None
    birth_date: Optional[str] = None


class SubscriptionData(_WireModel):
    """The rest-hook subscription created during the probe."""

    kind: Literal["subscription"] = "subscription"
    subscription_id: Optional[str] = None
    subscription_status: Optional[str] = None
    endpoint: Optional[str] = None
    cleaned_up: bool = False


ProbeData = Annotated[
    Union[CapabilityData, OAuthData, PatientData, SubscriptionData],
    Field(discriminator="kind"),
]


class ProbeResult(_WireModel):
    """Outcome of one validation step."""

    status: ProbeStatus
    message: str
    data: Optional[ProbeData] = None

    @classmethod
    def success(cls, message: str, data: Optional[Any] = None) -> "ProbeResult":
        """Property fully established."""
        return cls(status=ProbeStatus.SUCCESS, message=message, data=data)

    @classmethod
    def warning(cls, message: str, data: Optional[Any] = None) -> "ProbeResult":
        """Property partially or ambiguously established."""
        return cls(status=ProbeStatus.WARNING, message=message, data=data)

    @classmethod
    def error(cls, message: str, data: Optional[Any] = None) -> "ProbeResult":
        """Property could not be established."""
        return cls(status=ProbeStatus.ERROR, message=message, data=data)

    @property
    def is_error(self) -> bool:
        """Whether the step failed."""
        return self.status == ProbeStatus.ERROR


class AggregateValidationResult(_WireModel):
    """One full validation run. Replaced wholesale, never edited."""

    capability: ProbeResult
    oauth: ProbeResult
    test_patient: ProbeResult
    subscription: ProbeResult

    @property
    def passed(self) -> bool:
        """A run fails activation when capability or oauth errored."""
        return not (self.capability.is_error or self.oauth.is_error)

    def statuses(self) -> Dict[str, str]:
        """Probe name to status value, for logs and audit details."""
        return {
            ProbeName.CAPABILITY.value: self.capability.status.value,
            ProbeName.OAUTH.value: self.oauth.status.value,
            ProbeName.TEST_PATIENT.value: self.test_patient.status.value,
            ProbeName.SUBSCRIPTION.value: self.subscription.status.value,
        }

    def to_wire(self) -> Dict[str, Any]:
        """JSON-ready dict using the camelCase wire names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
