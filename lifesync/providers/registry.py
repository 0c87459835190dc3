"""Static provider table.

This is configuration, not behavior: every provider-specific constant lives
here. Client ids and secrets are read from settings at load time.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from lifesync.core.config import Settings, settings
from lifesync.core.errors import UnsupportedProviderError
from lifesync.schemas.connection import ConnectionCategory
from lifesync.schemas.records import LifeDomain


class OAuthConfig(BaseModel):
    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str
    scopes: List[str]
    authorize_url: str
    token_url: str
    revoke_url: Optional[str] = None
    extra_authorize_params: Dict[str, str] = Field(default_factory=dict)


class ProviderDefinition(BaseModel):
    id: str
    name: str
    category: ConnectionCategory
    domain: LifeDomain
    oauth: OAuthConfig
    supported_data_types: List[str]
    capabilities: List[str]
    # Optional endpoints: connectivity probe and record listing.
    test_url: Optional[str] = None
    data_url: Optional[str] = None
    records_key: str = "records"
    timestamp_field: str = "timestamp"
    # Query parameter carrying the incremental checkpoint (ISO 8601).
    since_param: str = "since"


def load_providers(config: Settings = settings) -> Dict[str, ProviderDefinition]:
    base = config.PUBLIC_BASE_URL.rstrip("/")

    def callback(provider_id: str) -> str:
        return f"{base}/connections/oauth/{provider_id}/callback"

    return {
        "plaid": ProviderDefinition(
            id="plaid",
            name="Plaid",
            category=ConnectionCategory.FINANCIAL,
            domain=LifeDomain.FINANCIAL,
            oauth=OAuthConfig(
                client_id=config.PLAID_CLIENT_ID or "",
                client_secret=config.PLAID_SECRET or "",
                redirect_uri=callback("plaid"),
                scopes=["transactions", "accounts", "identity"],
                authorize_url="https://production.plaid.com/link/token/create",
                token_url="https://production.plaid.com/link/token/exchange",
            ),
            supported_data_types=["transactions", "accounts", "balances", "identity"],
            capabilities=["real-time-sync", "historical-data", "categorization"],
            data_url="https://production.plaid.com/transactions/get",
            records_key="transactions",
            timestamp_field="date",
        ),
        "google_calendar": ProviderDefinition(
            id="google_calendar",
            name="Google Calendar",
            category=ConnectionCategory.CALENDAR,
            domain=LifeDomain.CALENDAR,
            oauth=OAuthConfig(
                client_id=config.GOOGLE_CLIENT_ID or "",
                client_secret=config.GOOGLE_CLIENT_SECRET or "",
                redirect_uri=callback("google_calendar"),
                scopes=["https://www.googleapis.com/auth/calendar.readonly"],
                authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
                token_url="https://oauth2.googleapis.com/token",
                revoke_url="https://oauth2.googleapis.com/revoke",
                extra_authorize_params={"access_type": "offline", "prompt": "consent"},
            ),
            supported_data_types=["events", "calendars", "availability"],
            capabilities=["real-time-sync", "webhook-notifications"],
            test_url="https://www.googleapis.com/calendar/v3/users/me/calendarList",
            data_url="https://www.googleapis.com/calendar/v3/calendars/primary/events",
            records_key="items",
            timestamp_field="updated",
        ),
        "fitbit": ProviderDefinition(
            id="fitbit",
            name="Fitbit",
            category=ConnectionCategory.HEALTH,
            domain=LifeDomain.HEALTH,
            oauth=OAuthConfig(
                client_id=config.FITBIT_CLIENT_ID or "",
                client_secret=config.FITBIT_CLIENT_SECRET or "",
                redirect_uri=callback("fitbit"),
                scopes=["activity", "heartrate", "sleep", "weight"],
                authorize_url="https://www.fitbit.com/oauth2/authorize",
                token_url="https://api.fitbit.com/oauth2/token",
                revoke_url="https://api.fitbit.com/oauth2/revoke",
                extra_authorize_params={"prompt": "consent"},
            ),
            supported_data_types=["activity", "heartrate", "sleep", "weight", "nutrition"],
            capabilities=["real-time-sync", "historical-data", "intraday-data"],
            test_url="https://api.fitbit.com/1/user/-/profile.json",
            data_url="https://api.fitbit.com/1/user/-/activities/list.json",
            records_key="activities",
            timestamp_field="startTime",
        ),
    }


class ProviderRegistry:
    """Lookup over the provider table."""

    def __init__(self, providers: Optional[Dict[str, ProviderDefinition]] = None):
        self._providers = providers if providers is not None else load_providers()

    def get(self, provider_id: str) -> ProviderDefinition:
        provider = self._providers.get(provider_id)
        if provider is None:
            raise UnsupportedProviderError(provider_id)
        return provider

    def find(self, provider_id: str) -> Optional[ProviderDefinition]:
        return self._providers.get(provider_id)

    def all(self) -> List[ProviderDefinition]:
        return list(self._providers.values())

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._providers
