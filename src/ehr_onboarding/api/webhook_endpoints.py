"""Inbound FHIR rest-hook notifications."""

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends

from ehr_onboarding.api.dependencies import get_request_context, get_webhook_service
from ehr_onboarding.services.ehr_audit_service import RequestContext
from ehr_onboarding.services.webhook_service import WebhookService

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

# Module-level dependency variables to avoid B008 errors
service_dependency = Depends(get_webhook_service)
context_dependency = Depends(get_request_context)
payload_body = Body(...)


@router.post("/fhir/{connection_id}")
async def receive_fhir_webhook(
    connection_id: str,
    payload: Dict[str, Any] = payload_body,
    service: WebhookService = service_dependency,
    context: RequestContext = context_dependency,
) -> Dict[str, str]:
    """Store a notification pushed by the EHR for this connection."""
    service.receive(connection_id, payload, context)
    return {"message": "Webhook received successfully"}
