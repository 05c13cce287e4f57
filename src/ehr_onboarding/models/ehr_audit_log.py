"""
EHR Connection Audit Log Model.

Append-only record of every lifecycle action taken on an EHR connection.
connection_id is deliberately not a foreign key: pre-save validations are
audited against the placeholder id "temp".
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ehr_onboarding.models.base import BaseModel, utc_now
from ehr_onboarding.models.db_types import JSONB


class EhrAuditAction(Enum):
    """Types of audited connection actions."""

    VALIDATE = "validate"
    CONNECT = "connect"
    UPDATE = "update"
    ACTIVATE = "activate"
    DISCONNECT = "disconnect"
    WEBHOOK_RECEIVED = "webhook_received"


class EhrAuditLog(BaseModel):
    """Immutable audit row for one connection action."""

    __tablename__ = "ehr_audit_logs"

    connection_id: Mapped[str] = mapped_column(String(36), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    details: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONB)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45))
    user_agent: Mapped[Optional[str]] = mapped_column(Text)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        Index("idx_ehr_audit_connection", "connection_id"),
        Index("idx_ehr_audit_action_time", "action", "timestamp"),
    )
