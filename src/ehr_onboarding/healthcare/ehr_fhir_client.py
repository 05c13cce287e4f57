"""Remote probes against a hospital's FHIR server.

This module provides the async client that exercises a candidate EHR
integration: it reads the CapabilityStatement, negotiates an OAuth2 token,
fetches a known test Patient and round-trips a rest-hook Subscription.

Every probe converts its own failures (transport errors, timeouts, non-2xx
responses, malformed bodies) into a ProbeResult. No probe raises past its
own boundary, and none of them retry: a run reports what the server does
right now.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from types import TracebackType
from typing import Any, Dict, List, Optional, Type
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from ehr_onboarding.config import Settings, get_settings
from ehr_onboarding.core.exceptions import DecryptionError
from ehr_onboarding.healthcare.connection_config import ClientType, ConnectionConfig
from ehr_onboarding.healthcare.validation_results import (
    CapabilityData,
    OAuthData,
    PatientData,
    ProbeResult,
    SubscriptionData,
)
from ehr_onboarding.security.secret_codec import SecretCodec
from ehr_onboarding.utils.logging import get_logger

logger = get_logger(__name__)

FHIR_JSON = "application/fhir+json"
FORM_ENCODED = "application/x-www-form-urlencoded"


@dataclass
class ProbeSession:
    """Token captured during a single run. Never persisted."""

    access_token: Optional[str] = None
    token_type: Optional[str] = None
    expires_at: Optional[datetime] = None

    @property
    def has_token(self) -> bool:
        """Whether a bearer token is available for later probes."""
        if not self.access_token:
            return False
        if self.expires_at and self.expires_at <= datetime.now(timezone.utc):
            return False
        return True

    def store(
        self, access_token: str, token_type: Optional[str], expires_in: Optional[int]
    ) -> None:
        """Keep a freshly issued token for the rest of the run."""
        self.access_token = access_token
        self.token_type = token_type
        self.expires_at = (
            datetime.now(timezone.utc) + timedelta(seconds=expires_in)
            if expires_in
            else None
        )

    def clear(self) -> None:
        """Drop the token at the end of the run."""
        self.access_token = None
        self.token_type = None
        self.expires_at = None


def extract_supported_resources(capability: Dict[str, Any]) -> List[str]:
    """Resource types declared across all rest entries, de-duplicated in order."""
    resources: List[str] = []
    for rest in capability.get("rest") or []:
        if not isinstance(rest, dict):
            continue
        for resource in rest.get("resource") or []:
            resource_type = resource.get("type") if isinstance(resource, dict) else None
            if resource_type and resource_type not in resources:
                resources.append(resource_type)
    return resources


def patient_display_name(patient: Dict[str, Any]) -> str:
    """Given and family name of the first HumanName, else 'Patient {id}'."""
    names = patient.get("name") or []
    if names and isinstance(names[0], dict):
        name = names[0]
        given = name.get("given")
        if not isinstance(given, list):
            given = []
        family = name.get("family")
        if not isinstance(family, str):
            family = ""
        given_names = " ".join(part for part in given if isinstance(part, str))
        display = f"{given_names} {family}".strip()
        if display:
            return display
        if name.get("text"):
            return str(name["text"])
    return f"Patient {patient.get('id')}"


def describe_transport_error(error: httpx.RequestError) -> str:
    """Short operator-facing description of a transport failure."""
    if isinstance(error, httpx.TimeoutException):
        return "request timed out"
    if isinstance(error, httpx.ConnectError):
        detail = str(error) or "connection refused"
        return f"could not connect to server ({detail})"
    detail = str(error) or type(error).__name__
    return f"request failed ({detail})"


def _json_object(response: httpx.Response) -> Optional[Dict[str, Any]]:
    """Decode a JSON object body, or None when the body is not one."""
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _optional_text(value: Any) -> Optional[str]:
    """Scalar body field as a string; None for absent or structured values."""
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        return None
    return str(value)


def _coerce_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class EhrFhirClient:
    """Async probe client for one connection configuration."""

    def __init__(
        self,
        config: ConnectionConfig,
        codec: SecretCodec,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize probe client.

        Args:
            config: Connection under validation
            codec: Codec able to decrypt the stored client secret
            settings: Application settings (timeouts, required resources)
            transport: Optional httpx transport, used to stub the network
        """
        self.config = config
        self.codec = codec
        self.settings = settings or get_settings()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.fhir_request_timeout),
                headers={"Accept": FHIR_JSON},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "EhrFhirClient":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await self.close()

    def _fhir_url(self, path: str) -> str:
        return f"{self.config.fhir_base_url}/{path.lstrip('/')}"

    @staticmethod
    def _bearer(session: ProbeSession) -> Dict[str, str]:
        return {"Authorization": f"Bearer {session.access_token}"}

    # ------------------------------------------------------------------
    # Capability
    # ------------------------------------------------------------------

    async def probe_capability(self) -> ProbeResult:
        """Check the server's CapabilityStatement for required resources."""
        client = await self._get_client()
        try:
            response = await client.get(self._fhir_url("metadata"))
        except httpx.RequestError as e:
            return ProbeResult.error(
                f"Capability validation failed: {describe_transport_error(e)}"
            )

        if response.status_code == 404:
            return ProbeResult.error("Capability validation failed: Endpoint not found")
        if not response.is_success:
            return ProbeResult.error(
                f"Capability validation failed: HTTP {response.status_code}"
            )

        capability = _json_object(response)
        if capability is None or capability.get("resourceType") != "CapabilityStatement":
            return ProbeResult.error(
                "Invalid response: Expected CapabilityStatement resource"
            )

        supported = extract_supported_resources(capability)
        missing = [
            resource
            for resource in self.settings.required_fhir_resources
            if resource not in supported
        ]
        try:
            data = CapabilityData(
                fhir_version=capability.get("fhirVersion"),
                publisher=capability.get("publisher"),
                software_version=capability.get("version"),
                supported_resources=supported,
                missing_resources=missing,
            )
        except ValidationError as e:
            return ProbeResult.error(
                "Invalid response: malformed CapabilityStatement "
                f"({self._invalid_fields(e)})"
            )

        if missing:
            # Many servers under-report capabilities but still serve data
            return ProbeResult.warning(
                f"Missing support for resources: {', '.join(missing)}", data
            )
        return ProbeResult.success(f"FHIR {data.fhir_version} compatible", data)

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    async def probe_oauth(self, session: ProbeSession) -> ProbeResult:
        """Exercise the OAuth flow matching the client type."""
        if self.config.client_type == ClientType.SYSTEM:
            return await self._probe_system_oauth(session)
        return await self._probe_smart_oauth()

    async def _probe_system_oauth(self, session: ProbeSession) -> ProbeResult:
        """client_credentials grant against the token endpoint."""
        if not self.config.encrypted_client_secret:
            return ProbeResult.error("Client secret required for system OAuth")

        try:
            client_secret = self.codec.decrypt(self.config.encrypted_client_secret)
        except DecryptionError:
            return ProbeResult.error(
                "System OAuth failed: stored credential could not be decrypted"
            )

        client = await self._get_client()
        try:
            response = await client.post(
                self.config.token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.config.client_id,
                    "client_secret": client_secret,
                    "scope": self.config.scope_string,
                },
                headers={"Content-Type": FORM_ENCODED, "Accept": "application/json"},
                timeout=self.settings.oauth_request_timeout,
            )
        except httpx.RequestError as e:
            return ProbeResult.error(
                f"System OAuth failed: {describe_transport_error(e)}"
            )
        finally:
            del client_secret

        body = _json_object(response) or {}
        if not response.is_success:
            return ProbeResult.error(
                f"System OAuth failed: {self._token_error_detail(response.status_code, body)}"
            )

        access_token = body.get("access_token")
        if not access_token:
            return ProbeResult.error(
                "System OAuth failed: token response did not contain an access_token"
            )
        if not isinstance(access_token, str):
            return ProbeResult.error(
                "System OAuth failed: malformed token response (access_token)"
            )

        expires_in = _coerce_int(body.get("expires_in"))
        try:
            data = OAuthData(
                flow="system",
                token_type=body.get("token_type"),
                scope=body.get("scope"),
                expires_in=expires_in,
                token_url=self.config.token_url,
            )
        except ValidationError as e:
            return ProbeResult.error(
                f"System OAuth failed: malformed token response ({self._invalid_fields(e)})"
            )

        session.store(access_token, data.token_type, expires_in)
        return ProbeResult.success("System OAuth authentication successful", data)

    @staticmethod
    def _invalid_fields(error: ValidationError) -> str:
        """Fields a response body failed to populate."""
        fields = sorted(
            {str(detail["loc"][0]) for detail in error.errors() if detail["loc"]}
        )
        return ", ".join(fields) or "body"

    @staticmethod
    def _token_error_detail(status_code: int, body: Dict[str, Any]) -> str:
        """Map a failed token response to a specific explanation."""
        if status_code == 400:
            summary = "malformed token request"
        elif status_code == 401:
            summary = "invalid client credentials"
        elif status_code == 403:
            summary = "client not authorized for the requested scopes"
        elif status_code >= 500:
            summary = f"token endpoint server error (HTTP {status_code})"
        else:
            summary = f"token request rejected (HTTP {status_code})"

        error_code = body.get("error")
        description = body.get("error_description")
        if error_code and description:
            return f"{summary} ({error_code}: {description})"
        if error_code or description:
            return f"{summary} ({error_code or description})"
        return summary

    async def _probe_smart_oauth(self) -> ProbeResult:
        """Confirm the authorization endpoint exists.

        A SMART authorization-code flow needs an interactive user, so the
        best this probe can establish is reachability.
        """
        authorization_url = self.config.authorization_url
        if not authorization_url:
            return ProbeResult.error("Authorization URL required for SMART on FHIR")

        client = await self._get_client()
        try:
            response = await client.get(
                authorization_url,
                headers={"Accept": "text/html,application/json"},
                timeout=self.settings.smart_probe_timeout,
            )
        except httpx.RequestError as e:
            return ProbeResult.error(
                f"SMART OAuth endpoint validation failed: {describe_transport_error(e)}"
            )

        # Any 4xx still proves the endpoint exists
        if response.status_code >= 500:
            return ProbeResult.error(
                f"SMART OAuth endpoint validation failed: HTTP {response.status_code}"
            )

        return ProbeResult.warning(
            "SMART on FHIR endpoints accessible (full auth requires user interaction)",
            OAuthData(
                flow="smart",
                token_type="Bearer",
                authorization_url=authorization_url,
                token_url=self.config.token_url,
            ),
        )

    # ------------------------------------------------------------------
    # Test patient
    # ------------------------------------------------------------------

    async def probe_test_patient(self, session: ProbeSession) -> ProbeResult:
        """Fetch the configured test Patient with the run's token."""
        if not session.has_token:
            return ProbeResult.error("No access token available for patient fetch")
        patient_id = self.config.test_patient_id
        if not patient_id:
            return ProbeResult.error("No test patient ID configured")

        client = await self._get_client()
        try:
            response = await client.get(
                self._fhir_url(f"Patient/{quote(patient_id, safe='')}"),
                headers=self._bearer(session),
            )
        except httpx.RequestError as e:
            return ProbeResult.error(
                f"Patient fetch failed: {describe_transport_error(e)}"
            )

        if response.status_code == 404:
            return ProbeResult.error(f"Patient {patient_id} not found")
        if response.status_code == 401:
            return ProbeResult.error("Authentication failed - check client credentials")
        if response.status_code == 403:
            return ProbeResult.error("Access forbidden - check scopes and permissions")
        if not response.is_success:
            return ProbeResult.error(f"Patient fetch failed: HTTP {response.status_code}")

        patient = _json_object(response)
        if patient is None or patient.get("resourceType") != "Patient":
            return ProbeResult.error("Invalid response: Expected Patient resource")

        display_name = patient_display_name(patient)
        try:
            data = PatientData(
                id=patient.get("id"),
                display_name=display_name,
                gender=patient.get("gender"),
                birth_date=patient.get("birthDate"),
            )
        except ValidationError as e:
            return ProbeResult.error(
                f"Invalid response: malformed Patient resource ({self._invalid_fields(e)})"
            )
        return ProbeResult.success(f"Patient fetch successful: {display_name}", data)

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def build_test_subscription(self) -> Dict[str, Any]:
        """Subscription resource registering the configured webhook."""
        return {
            "resourceType": "Subscription",
            "status": "requested",
            "criteria": "Patient",
            "channel": {
                "type": "rest-hook",
                "endpoint": self.config.webhook_endpoint,
                "payload": FHIR_JSON,
            },
            "reason": self.settings.subscription_reason,
        }

    async def probe_subscription(self, session: ProbeSession) -> ProbeResult:
        """Create a rest-hook Subscription, then delete it again."""
        if not session.has_token:
            return ProbeResult.error("No access token available for subscription test")
        if not self.config.webhook_endpoint:
            return ProbeResult.error("No webhook endpoint configured")

        client = await self._get_client()
        try:
            response = await client.post(
                self._fhir_url("Subscription"),
                json=self.build_test_subscription(),
                headers={**self._bearer(session), "Content-Type": FHIR_JSON},
            )
        except httpx.RequestError as e:
            return ProbeResult.error(
                f"Subscription test failed: {describe_transport_error(e)}"
            )

        status_code = response.status_code
        if status_code == 501:
            return ProbeResult.warning("Subscriptions not supported by this server")
        if status_code == 422:
            return ProbeResult.error(
                "Subscription validation failed - webhook endpoint must be externally reachable"
            )
        if status_code == 401:
            return ProbeResult.error("Authentication failed for subscription creation")
        if status_code == 403:
            return ProbeResult.error("Insufficient permissions for subscription creation")
        if not response.is_success:
            return ProbeResult.error(f"Subscription test failed: HTTP {status_code}")

        created = _json_object(response) or {}
        # Created server-side already; normalise rather than reject
        subscription_id = _optional_text(created.get("id"))
        cleaned_up = False
        if subscription_id:
            cleaned_up = await self._delete_subscription(session, subscription_id)

        return ProbeResult.success(
            "Subscription test successful",
            SubscriptionData(
                subscription_id=subscription_id,
                subscription_status=_optional_text(created.get("status")),
                endpoint=self.config.webhook_endpoint,
                cleaned_up=cleaned_up,
            ),
        )

    async def _delete_subscription(
        self, session: ProbeSession, subscription_id: str
    ) -> bool:
        """Best-effort removal of the test subscription."""
        client = await self._get_client()
        try:
            response = await client.delete(
                self._fhir_url(f"Subscription/{quote(subscription_id, safe='')}"),
                headers=self._bearer(session),
            )
        except httpx.RequestError as e:
            logger.warning(
                "test_subscription_cleanup_failed",
                connection_id=self.config.connection_id,
                subscription_id=subscription_id,
                error=describe_transport_error(e),
            )
            return False

        if not response.is_success:
            logger.warning(
                "test_subscription_cleanup_failed",
                connection_id=self.config.connection_id,
                subscription_id=subscription_id,
                status_code=response.status_code,
            )
            return False
        return True
