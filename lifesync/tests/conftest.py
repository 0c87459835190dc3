"""Shared fixtures: a controllable clock, a fake provider API and a wired service."""

import json
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest

from lifesync.core.config import Settings
from lifesync.providers.registry import OAuthConfig, ProviderDefinition, ProviderRegistry
from lifesync.schemas.connection import ConnectionCategory
from lifesync.schemas.records import LifeDomain
from lifesync.services.events import RecordingEventSink
from lifesync.services.ingestion_service import build_ingestion_service

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

TEST_KEY = "test-encryption-key-0123456789abcdef"


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeProviderApi:
    """httpx.MockTransport handler standing in for a provider's auth and data endpoints."""

    def __init__(self):
        self.requests = []
        self.token_status = 200
        self.token_body = {
            "access_token": "access-123",
            "refresh_token": "refresh-456",
            "expires_in": 3600,
            "token_type": "Bearer",
            "scope": "activity sleep",
        }
        self.refresh_body = {"access_token": "access-refreshed", "expires_in": 3600}
        self.test_status = 200
        self.data_status = 200
        self.records = []

    def calls_to(self, path: str):
        return [r for r in self.requests if r.url.path == path]

    def form(self, request: httpx.Request):
        return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/oauth/token":
            form = self.form(request)
            if form.get("grant_type") == "refresh_token":
                return httpx.Response(200, json=self.refresh_body)
            if self.token_status != 200:
                return httpx.Response(self.token_status, text=json.dumps({"error": "invalid_grant"}))
            return httpx.Response(200, json=self.token_body)
        if path == "/oauth/revoke":
            return httpx.Response(200)
        if path == "/v1/me":
            return httpx.Response(self.test_status, json={"id": "me"})
        if path == "/v1/records":
            return httpx.Response(self.data_status, json={"records": self.records})
        return httpx.Response(404)


def make_providers() -> ProviderRegistry:
    return ProviderRegistry(
        {
            "acme_health": ProviderDefinition(
                id="acme_health",
                name="Acme Health",
                category=ConnectionCategory.HEALTH,
                domain=LifeDomain.HEALTH,
                oauth=OAuthConfig(
                    client_id="client-abc",
                    client_secret="secret-xyz",
                    redirect_uri="http://testserver/connections/oauth/acme_health/callback",
                    scopes=["activity", "sleep"],
                    authorize_url="https://auth.example.test/oauth/authorize",
                    token_url="https://auth.example.test/oauth/token",
                    revoke_url="https://auth.example.test/oauth/revoke",
                    extra_authorize_params={"prompt": "consent"},
                ),
                supported_data_types=["activity", "sleep"],
                capabilities=["historical-data"],
                test_url="https://api.example.test/v1/me",
                data_url="https://api.example.test/v1/records",
                records_key="records",
                timestamp_field="timestamp",
            ),
            "acme_bank": ProviderDefinition(
                id="acme_bank",
                name="Acme Bank",
                category=ConnectionCategory.FINANCIAL,
                domain=LifeDomain.FINANCIAL,
                oauth=OAuthConfig(
                    redirect_uri="http://testserver/connections/oauth/acme_bank/callback",
                    scopes=["transactions"],
                    authorize_url="https://bank.example.test/authorize",
                    token_url="https://bank.example.test/token",
                ),
                supported_data_types=["transactions"],
                capabilities=["categorization"],
            ),
        }
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider_api():
    return FakeProviderApi()


@pytest.fixture
def http_client(provider_api):
    return httpx.AsyncClient(transport=httpx.MockTransport(provider_api))


@pytest.fixture
def events():
    return RecordingEventSink()


@pytest.fixture
def test_settings():
    return Settings(STORAGE_BACKEND="memory", ENCRYPTION_KEY=TEST_KEY, SYNC_ENABLED=False, LOG_TO_FILE=False)


@pytest.fixture
def service(test_settings, http_client, events, clock):
    return build_ingestion_service(
        config=test_settings,
        http_client=http_client,
        events=events,
        providers=make_providers(),
        clock=clock,
    )


async def connect_oauth(service, owner_id: str = "user-1", provider_id: str = "acme_health"):
    """Run a full authorization handshake and return the ConnectionResult."""
    redirect = service.begin_authorization(owner_id, provider_id)
    return await service.complete_authorization(owner_id, provider_id, "auth-code", redirect.state)
