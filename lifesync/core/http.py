"""Shared httpx client handling for provider calls."""

import base64
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from lifesync.schemas.secret import ApiKeyCredentials, BasicAuthCredentials, OAuthCredentials


@asynccontextmanager
async def provider_client(client: Optional[httpx.AsyncClient], timeout: float) -> AsyncIterator[httpx.AsyncClient]:
    """Yield the injected client, or a short-lived one closed on exit."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=timeout) as owned:
        yield owned


def auth_headers(credentials: Any) -> Dict[str, str]:
    """Request headers that present a stored credential to its provider."""
    if isinstance(credentials, OAuthCredentials):
        return {"Authorization": f"{credentials.token_type or 'Bearer'} {credentials.access_token}"}
    if isinstance(credentials, ApiKeyCredentials):
        return {"Authorization": f"Bearer {credentials.api_key}"}
    if isinstance(credentials, BasicAuthCredentials):
        token = base64.b64encode(f"{credentials.username}:{credentials.password}".encode("utf-8")).decode("ascii")
        return {"Authorization": f"Basic {token}"}
    return {}
