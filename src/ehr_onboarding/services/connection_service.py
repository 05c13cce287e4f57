"""EHR connection lifecycle service.

Owns the status machine of a connection:

    pending ──> validated ──> active
       │  ^         │            │
       v  │         v            v
      error <───────┴────────────┘

and every state may move to the terminal ``disconnected``. Validation runs
never promote a connection to ``active``; that is an explicit operator
action. Every action emits exactly one audit entry.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from pydantic import SecretStr, ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ehr_onboarding.config import Settings, get_settings
from ehr_onboarding.core.exceptions import (
    ConfigurationError,
    ConnectionNotFoundError,
    DecryptionError,
    InvalidStatusTransitionError,
)
from ehr_onboarding.healthcare.connection_config import (
    TRANSIENT_CONNECTION_ID,
    ConnectionConfig,
    ConnectionStatus,
)
from ehr_onboarding.healthcare.connection_validator import ConnectionValidator
from ehr_onboarding.healthcare.curl_snippets import generate_curl_snippets
from ehr_onboarding.healthcare.validation_results import AggregateValidationResult
from ehr_onboarding.models.base import utc_now
from ehr_onboarding.models.ehr_audit_log import EhrAuditAction
from ehr_onboarding.models.ehr_connection import EhrConnection
from ehr_onboarding.models.ehr_mapping import EhrMapping
from ehr_onboarding.schemas.connections import (
    ConnectionCreate,
    ConnectionUpdate,
    MappingCreate,
)
from ehr_onboarding.security.secret_codec import SecretCodec
from ehr_onboarding.services.ehr_audit_service import EhrAuditService, RequestContext
from ehr_onboarding.utils.logging import get_logger

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: Dict[ConnectionStatus, frozenset] = {
    ConnectionStatus.PENDING: frozenset(
        {ConnectionStatus.VALIDATED, ConnectionStatus.ERROR, ConnectionStatus.DISCONNECTED}
    ),
    ConnectionStatus.VALIDATED: frozenset(
        {ConnectionStatus.ACTIVE, ConnectionStatus.ERROR, ConnectionStatus.DISCONNECTED}
    ),
    ConnectionStatus.ACTIVE: frozenset(
        {ConnectionStatus.ERROR, ConnectionStatus.DISCONNECTED}
    ),
    ConnectionStatus.ERROR: frozenset(
        {ConnectionStatus.VALIDATED, ConnectionStatus.ERROR, ConnectionStatus.DISCONNECTED}
    ),
    ConnectionStatus.DISCONNECTED: frozenset(),
}


REQUIRED_FIELDS = frozenset(
    {
        "site_name",
        "environment",
        "ehr_vendor",
        "fhir_base_url",
        "token_url",
        "client_type",
        "client_id",
        "scopes",
    }
)


def can_transition(current: ConnectionStatus, target: ConnectionStatus) -> bool:
    """Whether the lifecycle permits current -> target."""
    return target in ALLOWED_TRANSITIONS[current]


def status_after_validation(
    current: ConnectionStatus, result: AggregateValidationResult
) -> ConnectionStatus:
    """Status of a persisted connection once a run has been recorded."""
    if not result.passed:
        return ConnectionStatus.ERROR
    if current in (ConnectionStatus.PENDING, ConnectionStatus.ERROR):
        return ConnectionStatus.VALIDATED
    return current


@dataclass(frozen=True)
class ValidationOutcome:
    """A finished validation request."""

    results: AggregateValidationResult
    curl_snippets: Dict[str, str]
    status: Optional[ConnectionStatus] = None


class ConnectionService:
    """Create, validate, activate and disconnect EHR connections."""

    def __init__(
        self,
        db_session: Session,
        codec: SecretCodec,
        validator: ConnectionValidator,
        settings: Optional[Settings] = None,
    ):
        """Initialize connection service.

        Args:
            db_session: SQLAlchemy session for this unit of work
            codec: Codec protecting stored client secrets
            validator: Orchestrator running the remote probes
            settings: Application settings
        """
        self.db = db_session
        self.codec = codec
        self.validator = validator
        self.settings = settings or get_settings()
        self.audit = EhrAuditService(db_session)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_connection(self, connection_id: str) -> EhrConnection:
        """Live connection by id.

        Raises:
            ConnectionNotFoundError: unknown or disconnected connection
        """
        connection = EhrConnection.get_by_id(self.db, connection_id)
        if connection is None or connection.is_disconnected:
            raise ConnectionNotFoundError(connection_id)
        return connection

    def list_connections(self, hospital_id: Optional[str] = None) -> List[EhrConnection]:
        """Live connections of one hospital."""
        hospital_id = hospital_id or self.settings.default_hospital_id
        statement = (
            select(EhrConnection)
            .where(EhrConnection.hospital_id == hospital_id)
            .where(EhrConnection.status != ConnectionStatus.DISCONNECTED.value)
            .order_by(EhrConnection.created_at)
        )
        return list(self.db.scalars(statement))

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_connection(
        self, data: ConnectionCreate, context: RequestContext
    ) -> EhrConnection:
        """Store a new connection in ``pending`` with its secret encrypted."""
        values = data.model_dump(exclude={"client_secret"})
        values["hospital_id"] = data.hospital_id or self.settings.default_hospital_id
        values["client_type"] = data.client_type.value

        connection = EhrConnection(
            **values,
            client_secret=self._encrypt(data.client_secret),
            status=ConnectionStatus.PENDING.value,
            created_by=context.user_id,
        )
        self.db.add(connection)
        self.db.flush()

        self.audit.log_action(
            EhrAuditAction.CONNECT,
            connection.id,
            context,
            {"siteName": connection.site_name, "ehrVendor": connection.ehr_vendor},
        )
        self._commit()
        logger.info(
            "ehr_connection_created",
            connection_id=connection.id,
            hospital_id=connection.hospital_id,
        )
        return connection

    def update_connection(
        self, connection_id: str, data: ConnectionUpdate, context: RequestContext
    ) -> EhrConnection:
        """Apply a partial update. Only field names are audited."""
        connection = self.get_connection(connection_id)
        updates = data.model_dump(exclude_unset=True)

        for field, value in updates.items():
            if value is None and field in REQUIRED_FIELDS:
                continue
            if field == "client_secret":
                value = self._encrypt(data.client_secret)
            elif field == "client_type" and value is not None:
                value = value.value
            setattr(connection, field, value)

        self.audit.log_action(
            EhrAuditAction.UPDATE,
            connection.id,
            context,
            {"updatedFields": sorted(updates)},
        )
        self._commit()
        return connection

    def activate_connection(
        self, connection_id: str, context: RequestContext
    ) -> EhrConnection:
        """Operator promotion of a validated connection to ``active``."""
        connection = self.get_connection(connection_id)
        current = ConnectionStatus(connection.status)
        if not can_transition(current, ConnectionStatus.ACTIVE):
            raise InvalidStatusTransitionError(
                current.value, ConnectionStatus.ACTIVE.value
            )

        connection.status = ConnectionStatus.ACTIVE.value
        self.audit.log_action(
            EhrAuditAction.ACTIVATE,
            connection.id,
            context,
            {"previousStatus": current.value},
        )
        self._commit()
        return connection

    def disconnect_connection(self, connection_id: str, context: RequestContext) -> None:
        """Terminal transition to ``disconnected``."""
        connection = self.get_connection(connection_id)
        previous = connection.status
        connection.status = ConnectionStatus.DISCONNECTED.value
        self.audit.log_action(
            EhrAuditAction.DISCONNECT,
            connection.id,
            context,
            {"previousStatus": previous},
        )
        self._commit()
        logger.info("ehr_connection_disconnected", connection_id=connection.id)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def validate_transient(
        self, data: ConnectionCreate, context: RequestContext
    ) -> ValidationOutcome:
        """Validate a configuration before it is saved. No status changes."""
        plaintext = data.client_secret.get_secret_value() if data.client_secret else None
        config = ConnectionConfig(
            connection_id=TRANSIENT_CONNECTION_ID,
            site_name=data.site_name,
            hospital_id=data.hospital_id or self.settings.default_hospital_id,
            ehr_vendor=data.ehr_vendor,
            ehr_version=data.ehr_version,
            fhir_base_url=data.fhir_base_url,
            authorization_url=data.authorization_url,
            token_url=data.token_url,
            client_type=data.client_type,
            client_id=data.client_id,
            encrypted_client_secret=self._encrypt(data.client_secret),
            scopes=data.scopes,
            test_patient_id=data.test_patient_id,
            webhook_endpoint=data.webhook_endpoint,
        )

        results = await self.validator.validate(config)

        self.audit.log_action(
            EhrAuditAction.VALIDATE,
            TRANSIENT_CONNECTION_ID,
            context,
            {
                "siteName": config.site_name,
                "ehrVendor": config.ehr_vendor,
                "passed": results.passed,
                "validationResults": results.to_wire(),
            },
        )
        self._commit()
        return ValidationOutcome(
            results=results,
            curl_snippets=generate_curl_snippets(config, plaintext),
        )

    async def validate_persisted(
        self, connection_id: str, context: RequestContext
    ) -> ValidationOutcome:
        """Re-validate a saved connection and record the outcome on it."""
        connection = self.get_connection(connection_id)
        try:
            config = self._config_for(connection)
        except ConfigurationError as e:
            self.audit.log_action(
                EhrAuditAction.VALIDATE,
                connection.id,
                context,
                {
                    "passed": False,
                    "previousStatus": connection.status,
                    "status": connection.status,
                    "error": e.message,
                },
            )
            self._commit()
            raise

        results = await self.validator.validate(config)

        previous = ConnectionStatus(connection.status)
        new_status = status_after_validation(previous, results)
        connection.validation_results = results.to_wire()
        connection.last_validated = utc_now()
        connection.status = new_status.value

        self.audit.log_action(
            EhrAuditAction.VALIDATE,
            connection.id,
            context,
            {
                "passed": results.passed,
                "previousStatus": previous.value,
                "status": new_status.value,
                "validationResults": results.to_wire(),
            },
        )
        self._commit()

        if new_status != previous:
            logger.info(
                "ehr_connection_status_changed",
                connection_id=connection.id,
                previous=previous.value,
                status=new_status.value,
            )

        return ValidationOutcome(
            results=results,
            curl_snippets=generate_curl_snippets(config, self._decrypt_for_display(config)),
            status=new_status,
        )

    # ------------------------------------------------------------------
    # Mappings
    # ------------------------------------------------------------------

    def list_mappings(self, connection_id: str) -> List[EhrMapping]:
        """Field mappings of a connection."""
        self.get_connection(connection_id)
        statement = (
            select(EhrMapping)
            .where(EhrMapping.connection_id == connection_id)
            .order_by(EhrMapping.created_at)
        )
        return list(self.db.scalars(statement))

    def create_mapping(self, connection_id: str, data: MappingCreate) -> EhrMapping:
        """Add a field mapping to a connection."""
        self.get_connection(connection_id)
        mapping = EhrMapping(connection_id=connection_id, **data.model_dump())
        self.db.add(mapping)
        self._commit()
        return mapping

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _config_for(connection: EhrConnection) -> ConnectionConfig:
        try:
            return ConnectionConfig.from_record(connection)
        except ValidationError as e:
            fields = sorted({str(error["loc"][0]) for error in e.errors() if error["loc"]})
            raise ConfigurationError(
                f"Connection {connection.id} has an invalid configuration: "
                + ", ".join(fields)
            ) from e

    def _encrypt(self, secret: Optional[SecretStr]) -> Optional[str]:
        if secret is None:
            return None
        value = secret.get_secret_value()
        return self.codec.encrypt(value) if value else None

    def _decrypt_for_display(self, config: ConnectionConfig) -> Optional[str]:
        if not config.encrypted_client_secret:
            return None
        try:
            return self.codec.decrypt(config.encrypted_client_secret)
        except DecryptionError:
            return None

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            logger.error("ehr_connection_commit_failed", error=str(e))
            self.db.rollback()
            raise
