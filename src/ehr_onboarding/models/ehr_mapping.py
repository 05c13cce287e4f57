"""Field mappings between local data and FHIR resources of a connection."""

from typing import Any, Dict, Optional

from sqlalchemy import Boolean, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ehr_onboarding.models.base import BaseModel, TimestampMixin
from ehr_onboarding.models.db_types import JSONB


class EhrMapping(BaseModel, TimestampMixin):
    """Maps one local field onto a FHIRPath within a resource type."""

    __tablename__ = "ehr_mappings"

    connection_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("ehr_connections.id"), nullable=False, index=True
    )
    mapping_name: Mapped[str] = mapped_column(String(255), nullable=False)
    local_field: Mapped[str] = mapped_column(String(255), nullable=False)
    fhir_resource: Mapped[str] = mapped_column(String(64), nullable=False)
    fhir_path: Mapped[str] = mapped_column(Text, nullable=False)
    code_system: Mapped[Optional[str]] = mapped_column(Text)
    transformation_rules: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONB)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    connection = relationship("EhrConnection", back_populates="mappings")
