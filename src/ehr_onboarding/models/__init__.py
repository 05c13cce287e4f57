"""Database models for EHR onboarding."""

from ehr_onboarding.models.base import Base
from ehr_onboarding.models.ehr_audit_log import EhrAuditAction, EhrAuditLog
from ehr_onboarding.models.ehr_connection import EhrConnection
from ehr_onboarding.models.ehr_mapping import EhrMapping
from ehr_onboarding.models.webhook_event import WebhookEvent

__all__ = [
    "Base",
    "EhrAuditAction",
    "EhrAuditLog",
    "EhrConnection",
    "EhrMapping",
    "WebhookEvent",
]
