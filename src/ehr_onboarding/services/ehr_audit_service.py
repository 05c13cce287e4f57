"""Audit emitter for EHR connection lifecycle actions.

Audit rows are append-only: this service can add entries and read them
back, nothing else.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ehr_onboarding.models.ehr_audit_log import EhrAuditAction, EhrAuditLog
from ehr_onboarding.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RequestContext:
    """Who asked for an action and where the request came from."""

    user_id: str = "system"
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class EhrAuditService:
    """Writes audit entries into the caller's unit of work."""

    def __init__(self, db_session: Session):
        """
        Initialize audit service.

        Args:
            db_session: SQLAlchemy session; the caller owns the commit
        """
        self.db = db_session

    def log_action(
        self,
        action: EhrAuditAction,
        connection_id: str,
        context: RequestContext,
        details: Optional[Dict[str, Any]] = None,
    ) -> EhrAuditLog:
        """
        Add one audit entry to the current transaction.

        Args:
            action: The action being audited
            connection_id: Connection id, or the transient placeholder
            context: Actor and request provenance
            details: JSON-serialisable details; never contains secrets

        Returns:
            The pending EhrAuditLog instance
        """
        entry = EhrAuditLog(
            connection_id=connection_id,
            user_id=context.user_id,
            action=action.value,
            details=details or {},
            ip_address=context.ip_address,
            user_agent=context.user_agent,
        )
        try:
            self.db.add(entry)
            self.db.flush()
        except SQLAlchemyError as e:
            logger.error(
                "audit_write_failed",
                action=action.value,
                connection_id=connection_id,
                error=str(e),
            )
            raise

        logger.info(
            "ehr_audit_logged",
            action=action.value,
            connection_id=connection_id,
            user_id=context.user_id,
        )
        return entry

    def list_for_connection(self, connection_id: str) -> List[EhrAuditLog]:
        """Audit trail of a connection, oldest first."""
        statement = (
            select(EhrAuditLog)
            .where(EhrAuditLog.connection_id == connection_id)
            .order_by(EhrAuditLog.timestamp)
        )
        return list(self.db.scalars(statement))
