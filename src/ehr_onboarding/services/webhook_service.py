"""Ingestion of FHIR rest-hook notifications.

Events are stored unprocessed; consumers pick them up with pending_events()
and report back through mark_processed().
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ehr_onboarding.core.exceptions import ConnectionNotFoundError
from ehr_onboarding.models.base import utc_now
from ehr_onboarding.models.ehr_audit_log import EhrAuditAction
from ehr_onboarding.models.ehr_connection import EhrConnection
from ehr_onboarding.models.webhook_event import WebhookEvent
from ehr_onboarding.services.ehr_audit_service import EhrAuditService, RequestContext
from ehr_onboarding.utils.logging import get_logger

logger = get_logger(__name__)


class WebhookService:
    """Stores inbound webhook payloads for a connection."""

    def __init__(self, db_session: Session):
        """Initialize webhook service with a database session."""
        self.db = db_session
        self.audit = EhrAuditService(db_session)

    def receive(
        self, connection_id: str, payload: Dict[str, Any], context: RequestContext
    ) -> WebhookEvent:
        """Persist an inbound resource and audit its receipt.

        Raises:
            ConnectionNotFoundError: unknown or disconnected connection
        """
        connection = EhrConnection.get_by_id(self.db, connection_id)
        if connection is None or connection.is_disconnected:
            raise ConnectionNotFoundError(connection_id)

        resource_type = payload.get("resourceType")
        resource_id = payload.get("id")
        event = WebhookEvent(
            connection_id=connection_id,
            event_type=resource_type or "unknown",
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            payload=payload,
            processed=False,
        )
        self.db.add(event)
        self.db.flush()

        self.audit.log_action(
            EhrAuditAction.WEBHOOK_RECEIVED,
            connection_id,
            context,
            {"eventType": resource_type, "resourceId": resource_id},
        )
        self._commit()
        logger.info(
            "webhook_received",
            connection_id=connection_id,
            event_id=event.id,
            event_type=event.event_type,
        )
        return event

    def pending_events(
        self, connection_id: Optional[str] = None, limit: int = 100
    ) -> List[WebhookEvent]:
        """Unprocessed events, oldest first."""
        statement = select(WebhookEvent).where(WebhookEvent.processed.is_(False))
        if connection_id:
            statement = statement.where(WebhookEvent.connection_id == connection_id)
        statement = statement.order_by(WebhookEvent.received_at).limit(limit)
        return list(self.db.scalars(statement))

    def mark_processed(
        self, event_id: str, error_message: Optional[str] = None
    ) -> WebhookEvent:
        """Record the outcome of processing an event.

        A failed attempt leaves the event pending and bumps its retry count.
        """
        event = WebhookEvent.get_by_id(self.db, event_id)
        if event is None:
            raise ValueError(f"Webhook event {event_id} not found")

        if error_message:
            event.error_message = error_message
            event.retry_count = (event.retry_count or 0) + 1
        else:
            event.processed = True
            event.processed_at = utc_now()
            event.error_message = None
        self._commit()
        return event

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            logger.error("webhook_commit_failed", error=str(e))
            self.db.rollback()
            raise
