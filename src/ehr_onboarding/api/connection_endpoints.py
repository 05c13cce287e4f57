"""
EHR Connection Endpoints.

Onboarding of hospital EHR systems: pre-save validation, CRUD, re-validation
and activation of connections, plus their field mappings. Client secrets are
write-only; no response ever includes one.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from ehr_onboarding.api.dependencies import get_connection_service, get_request_context
from ehr_onboarding.schemas.connections import (
    ConnectionCreate,
    ConnectionPublic,
    ConnectionUpdate,
    MappingCreate,
    MappingPublic,
    ValidationResponse,
)
from ehr_onboarding.services.connection_service import (
    ConnectionService,
    ValidationOutcome,
)
from ehr_onboarding.services.ehr_audit_service import RequestContext
from ehr_onboarding.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/connections", tags=["connections"])

# Module-level dependency variables to avoid B008 errors
service_dependency = Depends(get_connection_service)
context_dependency = Depends(get_request_context)
hospital_query = Query(None, alias="hospitalId")


def _validation_response(outcome: ValidationOutcome) -> ValidationResponse:
    return ValidationResponse(
        validation_results=outcome.results.to_wire(),
        curl_snippets=outcome.curl_snippets,
    )


@router.post(
    "/validate",
    response_model=ValidationResponse,
    response_model_by_alias=True,
)
async def validate_new_connection(
    data: ConnectionCreate,
    service: ConnectionService = service_dependency,
    context: RequestContext = context_dependency,
) -> ValidationResponse:
    """Validate a configuration before saving it."""
    outcome = await service.validate_transient(data, context)
    return _validation_response(outcome)


@router.post(
    "",
    response_model=ConnectionPublic,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def create_connection(
    data: ConnectionCreate,
    service: ConnectionService = service_dependency,
    context: RequestContext = context_dependency,
) -> ConnectionPublic:
    """Save a new connection in pending status."""
    connection = service.create_connection(data, context)
    return ConnectionPublic.from_record(connection)


@router.get("", response_model=List[ConnectionPublic], response_model_by_alias=True)
async def list_connections(
    hospital_id: Optional[str] = hospital_query,
    service: ConnectionService = service_dependency,
) -> List[ConnectionPublic]:
    """Connections of a hospital."""
    return [
        ConnectionPublic.from_record(connection)
        for connection in service.list_connections(hospital_id)
    ]


@router.get(
    "/{connection_id}", response_model=ConnectionPublic, response_model_by_alias=True
)
async def get_connection(
    connection_id: str,
    service: ConnectionService = service_dependency,
) -> ConnectionPublic:
    """One connection."""
    return ConnectionPublic.from_record(service.get_connection(connection_id))


@router.patch(
    "/{connection_id}", response_model=ConnectionPublic, response_model_by_alias=True
)
async def update_connection(
    connection_id: str,
    data: ConnectionUpdate,
    service: ConnectionService = service_dependency,
    context: RequestContext = context_dependency,
) -> ConnectionPublic:
    """Partially update a connection."""
    connection = service.update_connection(connection_id, data, context)
    return ConnectionPublic.from_record(connection)


@router.delete("/{connection_id}", status_code=status.HTTP_204_NO_CONTENT)
async def disconnect_connection(
    connection_id: str,
    service: ConnectionService = service_dependency,
    context: RequestContext = context_dependency,
) -> Response:
    """Disconnect a connection. This is final."""
    service.disconnect_connection(connection_id, context)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{connection_id}/validate",
    response_model=ValidationResponse,
    response_model_by_alias=True,
)
async def revalidate_connection(
    connection_id: str,
    service: ConnectionService = service_dependency,
    context: RequestContext = context_dependency,
) -> ValidationResponse:
    """Re-run validation on a saved connection and record the outcome."""
    outcome = await service.validate_persisted(connection_id, context)
    return _validation_response(outcome)


@router.post(
    "/{connection_id}/activate",
    response_model=ConnectionPublic,
    response_model_by_alias=True,
)
async def activate_connection(
    connection_id: str,
    service: ConnectionService = service_dependency,
    context: RequestContext = context_dependency,
) -> ConnectionPublic:
    """Promote a validated connection to active."""
    connection = service.activate_connection(connection_id, context)
    return ConnectionPublic.from_record(connection)


@router.get(
    "/{connection_id}/mappings",
    response_model=List[MappingPublic],
    response_model_by_alias=True,
)
async def list_mappings(
    connection_id: str,
    service: ConnectionService = service_dependency,
) -> List[MappingPublic]:
    """Field mappings of a connection."""
    return [
        MappingPublic.model_validate(mapping)
        for mapping in service.list_mappings(connection_id)
    ]


@router.post(
    "/{connection_id}/mappings",
    response_model=MappingPublic,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def create_mapping(
    connection_id: str,
    data: MappingCreate,
    service: ConnectionService = service_dependency,
) -> MappingPublic:
    """Add a field mapping to a connection."""
    return MappingPublic.model_validate(service.create_mapping(connection_id, data))
