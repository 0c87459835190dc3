"""Authorization flow tests: redirect URL, code exchange, cleanup, refresh and revoke"""

from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from lifesync.schemas.connection import ConnectionStatus
from lifesync.schemas.secret import CredentialKind, OAuthCredentials
from lifesync.services.oauth_flow import AuthorizationState
from lifesync.tests.conftest import connect_oauth


class TestBeginAuthorization:
    def test_redirect_url_parameters(self, service):
        redirect = service.begin_authorization("user-1", "acme_health")
        url = urlparse(redirect.redirect_url)
        params = {k: v[0] for k, v in parse_qs(url.query).items()}

        assert f"{url.scheme}://{url.netloc}{url.path}" == "https://auth.example.test/oauth/authorize"
        assert params["client_id"] == "client-abc"
        assert params["redirect_uri"] == "http://testserver/connections/oauth/acme_health/callback"
        assert params["scope"] == "activity sleep"
        assert params["response_type"] == "code"
        assert params["prompt"] == "consent"
        assert params["state"] == redirect.state
        assert len(redirect.state) == 64

    def test_states_are_unique(self, service):
        a = service.begin_authorization("user-1", "acme_health")
        b = service.begin_authorization("user-1", "acme_health")
        assert a.state != b.state
        assert service.oauth.session_status(a.state) == AuthorizationState.AWAITING_USER_CONSENT


class TestCompleteAuthorization:
    @pytest.mark.asyncio
    async def test_success_creates_connected_connection(self, service, provider_api, clock, events):
        result = await connect_oauth(service)

        assert result.success is True
        assert result.capabilities == ["historical-data"]
        connection = service.get_connection(result.connection_id)
        assert connection.status == ConnectionStatus.CONNECTED
        assert connection.owner_id == "user-1"

        creds = service.secret_store.retrieve(connection.credential_ref, "user-1")
        assert isinstance(creds, OAuthCredentials)
        assert creds.access_token == "access-123"
        assert creds.expires_at == clock() + timedelta(seconds=3600)

        exchange = provider_api.form(provider_api.calls_to("/oauth/token")[0])
        assert exchange["grant_type"] == "authorization_code"
        assert exchange["code"] == "auth-code"

        policy = service.scheduler.get_policy(result.connection_id)
        assert policy.active is True
        assert policy.next_run == clock() + timedelta(hours=1)
        assert "connection.connected" in events.names()

    @pytest.mark.asyncio
    async def test_token_exchange_failure_leaves_nothing_behind(self, service, provider_api):
        provider_api.token_status = 400

        result = await connect_oauth(service)

        assert result.success is False
        assert "Token exchange failed" in result.error
        assert service.list_connections("user-1") == []
        assert service.secret_store.list_for_owner("user-1") == []

    @pytest.mark.asyncio
    async def test_failed_connection_test_rolls_back(self, service, provider_api):
        provider_api.test_status = 401

        result = await connect_oauth(service)

        assert result.success is False
        assert "Connection test failed" in result.error
        assert service.list_connections("user-1") == []
        assert service.secret_store.list_for_owner("user-1") == []

    @pytest.mark.asyncio
    async def test_unsupported_provider(self, service):
        result = await service.complete_authorization("user-1", "nope", "code", "state")
        assert result.success is False
        assert result.error == "Unsupported provider: nope"

    @pytest.mark.asyncio
    async def test_state_from_another_owner_rejected(self, service):
        redirect = service.begin_authorization("user-1", "acme_health")
        result = await service.complete_authorization("user-2", "acme_health", "code", redirect.state)
        assert result.success is False
        assert result.error == "Authorization state mismatch"
        assert service.list_connections("user-2") == []

    @pytest.mark.asyncio
    async def test_expired_state_rejected(self, service, clock):
        redirect = service.begin_authorization("user-1", "acme_health")
        clock.advance(minutes=11)
        result = await service.complete_authorization("user-1", "acme_health", "code", redirect.state)
        assert result.success is False
        assert result.error == "Authorization state expired"

    @pytest.mark.asyncio
    async def test_state_is_single_use(self, service):
        service.oauth.require_known_state = True
        redirect = service.begin_authorization("user-1", "acme_health")
        first = await service.complete_authorization("user-1", "acme_health", "code", redirect.state)
        second = await service.complete_authorization("user-1", "acme_health", "code", redirect.state)
        assert first.success is True
        assert second.success is False
        assert service.oauth.session_status(redirect.state) == AuthorizationState.NOT_STARTED


class TestTokenMaintenance:
    @pytest.mark.asyncio
    async def test_refresh_keeps_refresh_token(self, service, provider_api, clock):
        result = await connect_oauth(service)
        secret_id = service.get_connection(result.connection_id).credential_ref

        refreshed = await service.oauth.refresh(secret_id, "user-1")

        assert refreshed.access_token == "access-refreshed"
        assert refreshed.refresh_token == "refresh-456"
        form = provider_api.form(provider_api.calls_to("/oauth/token")[-1])
        assert form["grant_type"] == "refresh_token"
        assert form["refresh_token"] == "refresh-456"
        assert service.secret_store.retrieve(secret_id, "user-1").access_token == "access-refreshed"

    @pytest.mark.asyncio
    async def test_refresh_without_refresh_token(self, service):
        secret_id = service.secret_store.store("user-1", "acme_health", CredentialKind.OAUTH, {"access_token": "a"})
        assert await service.oauth.refresh(secret_id, "user-1") is None

    @pytest.mark.asyncio
    async def test_revoke_disconnects(self, service, provider_api):
        result = await connect_oauth(service)

        assert await service.oauth.revoke(result.connection_id) is True

        revoke = provider_api.form(provider_api.calls_to("/oauth/revoke")[0])
        assert revoke["token"] == "refresh-456"
        assert service.get_connection(result.connection_id).status == ConnectionStatus.DISCONNECTED
        assert await service.oauth.revoke("missing") is False
