"""EHR connection model.

One row per hospital EHR integration. client_secret only ever holds
ciphertext produced by the SecretCodec.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ehr_onboarding.healthcare.connection_config import ConnectionStatus
from ehr_onboarding.models.base import BaseModel, TimestampMixin
from ehr_onboarding.models.db_types import JSONB


class EhrConnection(BaseModel, TimestampMixin):
    """Persisted connection configuration and last validation outcome."""

    __tablename__ = "ehr_connections"

    hospital_id: Mapped[str] = mapped_column(String(64), nullable=False)
    site_name: Mapped[str] = mapped_column(String(255), nullable=False)
    environment: Mapped[str] = mapped_column(String(32), nullable=False, default="test")
    ehr_vendor: Mapped[str] = mapped_column(String(128), nullable=False)
    ehr_version: Mapped[Optional[str]] = mapped_column(String(64))

    fhir_base_url: Mapped[str] = mapped_column(Text, nullable=False)
    authorization_url: Mapped[Optional[str]] = mapped_column(Text)
    token_url: Mapped[str] = mapped_column(Text, nullable=False)

    client_type: Mapped[str] = mapped_column(String(16), nullable=False)
    client_id: Mapped[str] = mapped_column(String(255), nullable=False)
    client_secret: Mapped[Optional[str]] = mapped_column(Text)
    jwks_url: Mapped[Optional[str]] = mapped_column(Text)
    redirect_uri: Mapped[Optional[str]] = mapped_column(Text)
    scopes: Mapped[List[str]] = mapped_column(JSONB, nullable=False, default=list)

    test_patient_id: Mapped[Optional[str]] = mapped_column(String(128))
    webhook_endpoint: Mapped[Optional[str]] = mapped_column(Text)

    contact_name: Mapped[Optional[str]] = mapped_column(String(255))
    contact_email: Mapped[Optional[str]] = mapped_column(String(255))

    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=ConnectionStatus.PENDING.value
    )
    validation_results: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONB)
    last_validated: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_by: Mapped[str] = mapped_column(String(64), nullable=False)

    mappings = relationship(
        "EhrMapping", back_populates="connection", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_ehr_connection_hospital", "hospital_id"),
        Index("idx_ehr_connection_status", "status"),
    )

    @property
    def is_disconnected(self) -> bool:
        """Disconnected connections accept no further transitions."""
        return self.status == ConnectionStatus.DISCONNECTED.value
