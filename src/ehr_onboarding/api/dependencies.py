"""FastAPI dependencies wiring services to the request."""

from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from ehr_onboarding.config import get_settings
from ehr_onboarding.core.database import get_db
from ehr_onboarding.healthcare.connection_validator import ConnectionValidator
from ehr_onboarding.security.secret_codec import SecretCodec
from ehr_onboarding.services.connection_service import ConnectionService
from ehr_onboarding.services.ehr_audit_service import RequestContext
from ehr_onboarding.services.webhook_service import WebhookService

# Module-level dependency variables to avoid B008 errors
user_id_header = Header(None, alias="X-User-Id")
user_agent_header = Header(None, alias="User-Agent")
db_dependency = Depends(get_db)


@lru_cache()
def get_codec() -> SecretCodec:
    """Process-wide codec built from the configured key."""
    return SecretCodec.from_settings(get_settings())


@lru_cache()
def get_validator() -> ConnectionValidator:
    """Process-wide validation orchestrator."""
    return ConnectionValidator(get_codec(), get_settings())


codec_dependency = Depends(get_codec)
validator_dependency = Depends(get_validator)


def get_request_context(
    request: Request,
    x_user_id: Optional[str] = user_id_header,
    user_agent: Optional[str] = user_agent_header,
) -> RequestContext:
    """Actor and provenance of the current request."""
    return RequestContext(
        user_id=x_user_id or get_settings().system_actor_id,
        ip_address=request.client.host if request.client else None,
        user_agent=user_agent,
    )


def get_connection_service(
    db: Session = db_dependency,
    codec: SecretCodec = codec_dependency,
    validator: ConnectionValidator = validator_dependency,
) -> ConnectionService:
    """Connection service bound to the request session."""
    return ConnectionService(db, codec, validator, get_settings())


def get_webhook_service(db: Session = db_dependency) -> WebhookService:
    """Webhook service bound to the request session."""
    return WebhookService(db)
