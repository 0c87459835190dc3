"""Authorization Flow Manager - the OAuth2 authorization-code handshake.

Drives one authorization through

    not_started -> awaiting_user_consent -> code_received
        -> tokens_exchanged -> connection_verified

and reports every failure as a ``ConnectionResult`` instead of raising.
When a step fails after tokens were stored or a pending connection was
created, both are removed again before the result is returned.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from lifesync.core.clock import Clock, utcnow
from lifesync.core.config import settings
from lifesync.core.crypto import generate_secure_token
from lifesync.core.errors import CredentialError, LifeSyncError, ProviderConnectionError
from lifesync.core.http import auth_headers, provider_client
from lifesync.core.logging import get_logger
from lifesync.providers.registry import ProviderDefinition, ProviderRegistry
from lifesync.schemas.connection import Connection, ConnectionResult, SyncCadence
from lifesync.schemas.secret import (
    ApiKeyCredentials,
    BasicAuthCredentials,
    CertificateCredentials,
    CredentialKind,
    OAuthCredentials,
    SecretMetadata,
)
from lifesync.services.connection_registry import ConnectionRegistry
from lifesync.services.secret_store import SecretStore

log = get_logger("oauth_flow")


class AuthorizationState(str, Enum):
    NOT_STARTED = "not_started"
    AWAITING_USER_CONSENT = "awaiting_user_consent"
    CODE_RECEIVED = "code_received"
    TOKENS_EXCHANGED = "tokens_exchanged"
    CONNECTION_VERIFIED = "connection_verified"
    FAILED = "failed"


@dataclass
class AuthorizationSession:
    state: str
    owner_id: str
    provider_id: str
    created_at: datetime
    status: AuthorizationState = AuthorizationState.NOT_STARTED
    error: Optional[str] = None


class AuthorizationRedirect(BaseModel):
    redirect_url: str
    state: str


class AuthorizationFlowManager:
    def __init__(
        self,
        providers: ProviderRegistry,
        secrets: SecretStore,
        connections: ConnectionRegistry,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Clock = utcnow,
        state_ttl_seconds: int = settings.OAUTH_STATE_TTL_SECONDS,
        http_timeout: float = settings.HTTP_TIMEOUT_SECONDS,
        require_known_state: bool = False,
    ):
        self.providers = providers
        self.secrets = secrets
        self.connections = connections
        self.http_client = http_client
        self.clock = clock
        self.state_ttl = timedelta(seconds=state_ttl_seconds)
        self.http_timeout = http_timeout
        self.require_known_state = require_known_state
        self._sessions: Dict[str, AuthorizationSession] = {}
        self._sessions_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Authorization code flow
    # -------------------------------------------------------------------------
    def begin_authorization(
        self,
        owner_id: str,
        provider_id: str,
        state: Optional[str] = None,
    ) -> AuthorizationRedirect:
        provider = self.providers.get(provider_id)
        state = state or generate_secure_token(32)

        session = AuthorizationSession(
            state=state,
            owner_id=owner_id,
            provider_id=provider_id,
            created_at=self.clock(),
        )
        session.status = AuthorizationState.AWAITING_USER_CONSENT
        with self._sessions_lock:
            self._prune_sessions()
            self._sessions[state] = session

        params = {
            "client_id": provider.oauth.client_id,
            "redirect_uri": provider.oauth.redirect_uri,
            "scope": " ".join(provider.oauth.scopes),
            "response_type": "code",
            "state": state,
            **provider.oauth.extra_authorize_params,
        }
        redirect_url = f"{provider.oauth.authorize_url}?{urlencode(params)}"
        log.info(f"Authorization started owner={owner_id} provider={provider_id}")
        return AuthorizationRedirect(redirect_url=redirect_url, state=state)

    async def complete_authorization(
        self,
        owner_id: str,
        provider_id: str,
        code: str,
        state: str,
    ) -> ConnectionResult:
        provider = self.providers.find(provider_id)
        if provider is None:
            return ConnectionResult(success=False, error=f"Unsupported provider: {provider_id}")

        session, error = self._claim_session(state, owner_id, provider_id)
        if error:
            log.warning(f"Rejected authorization callback owner={owner_id} provider={provider_id}: {error}")
            return ConnectionResult(success=False, error=error)
        session.status = AuthorizationState.CODE_RECEIVED

        secret_id: Optional[str] = None
        connection: Optional[Connection] = None
        try:
            tokens = await self._exchange_code(provider, code)
            session.status = AuthorizationState.TOKENS_EXCHANGED

            secret_id = self.secrets.store(
                owner_id,
                provider.id,
                CredentialKind.OAUTH,
                tokens,
                SecretMetadata(
                    scopes=tokens.scope.split() if tokens.scope else list(provider.oauth.scopes),
                    expires_at=tokens.expires_at,
                    permissions=list(provider.supported_data_types),
                ),
            )
            connection = self.connections.create_pending(
                owner_id,
                provider.id,
                provider.category,
                provider.name,
                data_types=provider.supported_data_types,
                sync_cadence=SyncCadence(),
            )

            test = await self.test_connection(provider, tokens)
            if not test.success:
                raise ProviderConnectionError(f"Connection test failed: {test.error}")

            self.connections.mark_connected(connection.id, secret_id)
            session.status = AuthorizationState.CONNECTION_VERIFIED
            log.info(f"Authorization completed owner={owner_id} provider={provider_id} connection={connection.id}")
            return ConnectionResult(
                success=True,
                connection_id=connection.id,
                capabilities=list(provider.capabilities),
            )
        except LifeSyncError as exc:
            session.status = AuthorizationState.FAILED
            session.error = str(exc)
            self._discard(owner_id, secret_id, connection)
            log.error(f"Authorization failed owner={owner_id} provider={provider_id}: {exc}")
            return ConnectionResult(success=False, error=str(exc))

    def session_status(self, state: str) -> AuthorizationState:
        with self._sessions_lock:
            session = self._sessions.get(state)
        return session.status if session else AuthorizationState.NOT_STARTED

    # -------------------------------------------------------------------------
    # Token maintenance
    # -------------------------------------------------------------------------
    async def refresh(self, secret_id: str, owner_id: str) -> Optional[OAuthCredentials]:
        """Swap the stored refresh token for a new access token. None when impossible."""
        summary = self.secrets.describe(secret_id, owner_id)
        if summary is None or summary.kind != CredentialKind.OAUTH:
            return None

        current = self.secrets.retrieve(secret_id, owner_id)
        if current is None or not current.refresh_token:
            log.info(f"No refresh token available for secret id={secret_id}")
            return None

        provider = self.providers.find(summary.provider)
        if provider is None:
            return None

        data = {
            "grant_type": "refresh_token",
            "client_id": provider.oauth.client_id,
            "client_secret": provider.oauth.client_secret,
            "refresh_token": current.refresh_token,
        }
        try:
            response = await self._post_form(provider.oauth.token_url, data)
            if response.is_error:
                log.warning(f"Token refresh rejected by {provider.id}: HTTP {response.status_code}")
                return None
            tokens = self._parse_tokens(response, fallback_refresh_token=current.refresh_token)
        except ProviderConnectionError as exc:
            log.warning(f"Token refresh failed for {provider.id}: {exc}")
            return None

        self.secrets.refresh_oauth(secret_id, owner_id, tokens)
        log.info(f"Refreshed tokens for secret id={secret_id} provider={provider.id}")
        return tokens

    async def revoke(self, connection_id: str) -> bool:
        """Best-effort provider revocation, then local disconnection regardless."""
        connection = self.connections.get(connection_id)
        if connection is None:
            return False

        provider = self.providers.find(connection.provider)
        if provider and provider.oauth.revoke_url and connection.credential_ref:
            try:
                credentials = self.secrets.retrieve(connection.credential_ref, connection.owner_id)
                if isinstance(credentials, OAuthCredentials):
                    token = credentials.refresh_token or credentials.access_token
                    response = await self._post_form(provider.oauth.revoke_url, {"token": token})
                    if response.is_error:
                        log.warning(f"Revocation rejected by {provider.id}: HTTP {response.status_code}")
            except (CredentialError, ProviderConnectionError) as exc:
                log.warning(f"Failed to revoke tokens for connection {connection_id}: {exc}")

        self.connections.disconnect(connection_id)
        return True

    async def test_connection(self, provider: ProviderDefinition, credentials: Any) -> ConnectionResult:
        """Probe the provider's test endpoint, or check credential shape when it has none."""
        if not _has_usable_secret(credentials):
            return ConnectionResult(success=False, error="Invalid access token")

        if not provider.test_url:
            return ConnectionResult(success=True, capabilities=list(provider.capabilities))

        try:
            async with provider_client(self.http_client, self.http_timeout) as client:
                response = await client.get(provider.test_url, headers=auth_headers(credentials))
        except httpx.HTTPError as exc:
            return ConnectionResult(success=False, error=f"Provider unreachable: {exc}")

        if response.is_error:
            return ConnectionResult(success=False, error=f"HTTP {response.status_code}")
        return ConnectionResult(success=True, capabilities=list(provider.capabilities))

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------
    async def _exchange_code(self, provider: ProviderDefinition, code: str) -> OAuthCredentials:
        data = {
            "grant_type": "authorization_code",
            "client_id": provider.oauth.client_id,
            "client_secret": provider.oauth.client_secret,
            "code": code,
            "redirect_uri": provider.oauth.redirect_uri,
        }
        response = await self._post_form(provider.oauth.token_url, data)
        if response.is_error:
            raise ProviderConnectionError(f"Token exchange failed: {response.text}")
        return self._parse_tokens(response)

    async def _post_form(self, url: str, data: Dict[str, str]) -> httpx.Response:
        try:
            async with provider_client(self.http_client, self.http_timeout) as client:
                return await client.post(url, data=data, headers={"Accept": "application/json"})
        except httpx.HTTPError as exc:
            raise ProviderConnectionError(f"Provider unreachable: {exc}") from exc

    def _parse_tokens(
        self,
        response: httpx.Response,
        fallback_refresh_token: Optional[str] = None,
    ) -> OAuthCredentials:
        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderConnectionError("Token endpoint returned a non-JSON body") from exc
        if not isinstance(body, dict) or not body.get("access_token"):
            raise ProviderConnectionError("Token endpoint response has no access_token")

        expires_at = None
        if body.get("expires_in") is not None:
            try:
                expires_at = self.clock() + timedelta(seconds=int(body["expires_in"]))
            except (TypeError, ValueError) as exc:
                raise ProviderConnectionError("Token endpoint returned an invalid expires_in") from exc

        try:
            return OAuthCredentials(
                access_token=body["access_token"],
                refresh_token=body.get("refresh_token") or fallback_refresh_token,
                expires_at=expires_at,
                token_type=body.get("token_type") or "Bearer",
                scope=body.get("scope"),
            )
        except PydanticValidationError as exc:
            raise ProviderConnectionError("Token endpoint response is malformed") from exc

    def _claim_session(self, state: str, owner_id: str, provider_id: str):
        """Pop the session for ``state``. Returns (session, error)."""
        now = self.clock()
        with self._sessions_lock:
            session = self._sessions.pop(state, None) if state else None

        if session is None:
            if self.require_known_state or not state:
                return None, "Unknown or missing authorization state"
            # Callbacks may arrive after a restart dropped the session table.
            session = AuthorizationSession(
                state=state,
                owner_id=owner_id,
                provider_id=provider_id,
                created_at=now,
                status=AuthorizationState.AWAITING_USER_CONSENT,
            )
            return session, None

        if now - session.created_at > self.state_ttl:
            return None, "Authorization state expired"
        if session.owner_id != owner_id or session.provider_id != provider_id:
            return None, "Authorization state mismatch"
        return session, None

    def _prune_sessions(self) -> None:
        cutoff = self.clock() - self.state_ttl
        for key in [k for k, s in self._sessions.items() if s.created_at < cutoff]:
            del self._sessions[key]

    def _discard(self, owner_id: str, secret_id: Optional[str], connection: Optional[Connection]) -> None:
        if connection is not None:
            self.connections.delete(connection.id)
        if secret_id is not None:
            self.secrets.delete(secret_id, owner_id)


def _has_usable_secret(credentials: Any) -> bool:
    if isinstance(credentials, OAuthCredentials):
        return bool(credentials.access_token)
    if isinstance(credentials, ApiKeyCredentials):
        return bool(credentials.api_key)
    if isinstance(credentials, BasicAuthCredentials):
        return bool(credentials.username and credentials.password)
    if isinstance(credentials, CertificateCredentials):
        return bool(credentials.certificate and credentials.private_key)
    return False
