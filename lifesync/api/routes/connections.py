"""Connection routes - provider catalog, OAuth handshake and credential connections."""

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from lifesync.api.deps import get_ingestion_service, get_owner_id
from lifesync.core.errors import ConnectionNotFoundError
from lifesync.schemas.api import CredentialConnectRequest, CredentialRotationOut, ProviderOut
from lifesync.schemas.connection import Connection, ConnectionResult
from lifesync.schemas.secret import SecretSummary
from lifesync.services.ingestion_service import IngestionService
from lifesync.services.oauth_flow import AuthorizationRedirect

router = APIRouter(prefix="/connections", tags=["connections"])


@router.get("", response_model=list[Connection])
def list_connections(
    owner_id: str = Depends(get_owner_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    """All connections owned by the caller."""
    return service.list_connections(owner_id)


@router.get("/providers", response_model=list[ProviderOut])
def list_providers(service: IngestionService = Depends(get_ingestion_service)):
    """Providers this deployment can connect to."""
    return [
        ProviderOut(
            id=p.id,
            name=p.name,
            category=p.category.value,
            domain=p.domain.value,
            supported_data_types=p.supported_data_types,
            capabilities=p.capabilities,
        )
        for p in service.providers.all()
    ]


@router.post("/oauth/{provider_id}/start", response_model=AuthorizationRedirect)
def start_authorization(
    provider_id: str,
    owner_id: str = Depends(get_owner_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    """
    Begin the OAuth authorization-code flow.

    Returns the provider consent URL; the client redirects the user there.
    The returned state must come back unchanged on the callback.
    """
    return service.begin_authorization(owner_id, provider_id)


@router.get("/oauth/{provider_id}/callback", response_model=ConnectionResult)
async def authorization_callback(
    provider_id: str,
    response: Response,
    code: str = Query(..., min_length=1, description="Authorization code issued by the provider"),
    state: str = Query(..., min_length=1, description="State returned from /start"),
    owner_id: str = Depends(get_owner_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    """Complete the handshake: exchange the code, store tokens, verify the connection."""
    result = await service.complete_authorization(owner_id, provider_id, code, state)
    if not result.success:
        response.status_code = 400
    return result


@router.post("/credentials", response_model=ConnectionResult)
async def connect_with_credentials(
    body: CredentialConnectRequest,
    response: Response,
    owner_id: str = Depends(get_owner_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    """Connect a provider with an API key, basic auth or certificate credential."""
    result = await service.connect_with_credentials(
        owner_id,
        body.provider_id,
        body.kind,
        body.credentials,
        name=body.name,
        sync_cadence=body.sync_cadence,
    )
    if not result.success:
        response.status_code = 400
    return result


@router.get("/credentials/expiring", response_model=list[SecretSummary])
def expiring_credentials(
    days_ahead: int = Query(7, ge=0, le=365, description="Window in days from now"),
    owner_id: str = Depends(get_owner_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    """Stored credentials whose expiry falls inside the window. Payloads are never returned."""
    return service.expiring_credentials(owner_id, days_ahead)


@router.post("/credentials/rotate", response_model=CredentialRotationOut)
def rotate_credentials(
    owner_id: str = Depends(get_owner_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    """Re-encrypt the caller's credentials under the current primary key."""
    rotated = service.rotate_credentials(owner_id)
    return CredentialRotationOut(rotated=rotated, key_id=service.secret_store.cipher.key_id)


@router.get("/{connection_id}", response_model=Connection)
def get_connection(
    connection_id: str,
    owner_id: str = Depends(get_owner_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    connection = service.get_connection(connection_id, owner_id)
    if connection is None:
        raise ConnectionNotFoundError(connection_id)
    return connection


@router.post("/{connection_id}/revoke", response_model=Connection)
async def revoke_connection(
    connection_id: str,
    owner_id: str = Depends(get_owner_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    """Revoke provider tokens (best effort) and mark the connection disconnected."""
    if not await service.disconnect(connection_id, owner_id):
        raise ConnectionNotFoundError(connection_id)
    return service.get_connection(connection_id, owner_id)


@router.delete("/{connection_id}", status_code=204)
async def delete_connection(
    connection_id: str,
    owner_id: str = Depends(get_owner_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    """Disconnect, then remove the connection and its stored credentials."""
    if not await service.delete_connection(connection_id, owner_id):
        raise HTTPException(status_code=404, detail=f"Connection '{connection_id}' not found")
    return Response(status_code=204)
