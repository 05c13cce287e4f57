"""Validation orchestrator.

Sequences the four probes of a run:

    capability ─┐
                ├─> testPatient ─> subscription
    oauth ──────┘

capability and oauth are independent and run concurrently. testPatient and
subscription need the token oauth produced, and are skipped (reported as
errors, without a network call) when the capability check or oauth errored,
or no token is available. A crashing probe becomes that probe's error result. A
cancelled run propagates the cancellation and yields no aggregate.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional

import httpx

from ehr_onboarding.config import Settings, get_settings
from ehr_onboarding.healthcare.connection_config import ConnectionConfig
from ehr_onboarding.healthcare.ehr_fhir_client import EhrFhirClient, ProbeSession
from ehr_onboarding.healthcare.validation_results import (
    AggregateValidationResult,
    ProbeName,
    ProbeResult,
)
from ehr_onboarding.security.secret_codec import SecretCodec
from ehr_onboarding.utils.logging import get_logger
from ehr_onboarding.utils.monitoring import record_probe, record_validation_run

logger = get_logger(__name__)

ProbeFactory = Callable[[], Awaitable[ProbeResult]]


class ConnectionValidator:
    """Runs a full validation of one connection configuration."""

    def __init__(
        self,
        codec: SecretCodec,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize validator.

        Args:
            codec: Codec for the stored client secret
            settings: Application settings
            transport: Optional httpx transport shared by every run
        """
        self.codec = codec
        self.settings = settings or get_settings()
        self.transport = transport

    async def validate(self, config: ConnectionConfig) -> AggregateValidationResult:
        """Run capability, oauth, testPatient and subscription in order."""
        session = ProbeSession()
        log = logger.bind(
            connection_id=config.connection_id, ehr_vendor=config.ehr_vendor
        )
        log.info("validation_run_started", client_type=config.client_type.value)

        try:
            async with EhrFhirClient(
                config, self.codec, self.settings, self.transport
            ) as client:
                capability, oauth = await asyncio.gather(
                    self._run_probe(ProbeName.CAPABILITY, client.probe_capability),
                    self._run_probe(
                        ProbeName.OAUTH, lambda: client.probe_oauth(session)
                    ),
                )

                skip_reason = self._skip_reason(capability, oauth, session)

                if skip_reason:
                    test_patient = ProbeResult.error(
                        f"No access token available for patient fetch{skip_reason}"
                    )
                    subscription = ProbeResult.error(
                        f"No access token available for subscription test{skip_reason}"
                    )
                else:
                    test_patient = await self._run_probe(
                        ProbeName.TEST_PATIENT,
                        lambda: client.probe_test_patient(session),
                    )
                    subscription = await self._run_probe(
                        ProbeName.SUBSCRIPTION,
                        lambda: client.probe_subscription(session),
                    )
        except asyncio.CancelledError:
            log.info("validation_run_cancelled")
            raise
        finally:
            session.clear()

        result = AggregateValidationResult(
            capability=capability,
            oauth=oauth,
            test_patient=test_patient,
            subscription=subscription,
        )
        record_validation_run(result.passed)
        log.info(
            "validation_run_completed", passed=result.passed, **result.statuses()
        )
        return result

    @staticmethod
    def _skip_reason(
        capability: ProbeResult, oauth: ProbeResult, session: ProbeSession
    ) -> str:
        """Why token-dependent probes must not run, or '' when they may."""
        if capability.is_error:
            return " (capability check failed)"
        if oauth.is_error or not session.has_token:
            return " (OAuth did not yield a token)"
        return ""

    async def _run_probe(self, name: ProbeName, factory: ProbeFactory) -> ProbeResult:
        """Run one probe, converting any unexpected exception to an error."""
        started = time.perf_counter()
        try:
            result = await factory()
        except Exception as e:  # pylint: disable=broad-except
            logger.error(
                "probe_crashed",
                probe=name.value,
                error_type=type(e).__name__,
                exc_info=True,
            )
            result = ProbeResult.error(
                f"{name.value} probe failed unexpectedly: {type(e).__name__}"
            )

        duration = time.perf_counter() - started
        record_probe(name.value, result.status.value, duration)
        logger.debug(
            "probe_completed",
            probe=name.value,
            status=result.status.value,
            duration_ms=round(duration * 1000, 2),
        )
        return result
