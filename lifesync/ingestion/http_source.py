"""Provider REST source: lists records from a provider's declared data endpoint."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from lifesync.core.config import settings
from lifesync.core.errors import CredentialError, ProviderConnectionError
from lifesync.core.http import auth_headers, provider_client
from lifesync.core.logging import get_logger
from lifesync.providers.registry import ProviderDefinition
from lifesync.schemas.connection import Connection
from lifesync.schemas.records import RawRecord, RecordProvenance
from .base import BaseSource, parse_timestamp

log = get_logger("ingestion.http")


class ProviderApiSource(BaseSource):
    """Fetches one page of records from ``provider.data_url``."""

    def __init__(
        self,
        provider: ProviderDefinition,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = settings.HTTP_TIMEOUT_SECONDS,
    ):
        if not provider.data_url:
            raise ValueError(f"Provider {provider.id} declares no data endpoint")
        self.provider = provider
        self.name = provider.id
        self.http_client = http_client
        self.timeout = timeout

    async def fetch(
        self,
        connection: Optional[Connection] = None,
        credentials: Any = None,
        since: Optional[datetime] = None,
    ) -> List[RawRecord]:
        if connection is None:
            raise ValueError("ProviderApiSource.fetch requires a connection")

        try:
            async with provider_client(self.http_client, self.timeout) as client:
                resp = await client.get(
                    self.provider.data_url,
                    params=self._params(since),
                    headers=auth_headers(credentials),
                )
        except httpx.HTTPError as exc:
            raise ProviderConnectionError(f"{self.provider.name} unreachable: {exc}") from exc

        if resp.status_code in (401, 403):
            raise CredentialError(f"{self.provider.name} rejected the stored credentials (HTTP {resp.status_code})")
        if resp.is_error:
            raise ProviderConnectionError(f"{self.provider.name} returned HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderConnectionError(f"{self.provider.name} returned a non-JSON body") from exc

        items = data.get(self.provider.records_key, []) if isinstance(data, dict) else data
        results: List[RawRecord] = []
        for item in items or []:
            if not isinstance(item, dict):
                continue
            ts = parse_timestamp(item.get(self.provider.timestamp_field))
            if not ts:
                continue
            results.append(
                RawRecord(
                    owner_id=connection.owner_id,
                    source_id=connection.id,
                    domain=self.provider.domain,
                    timestamp=ts,
                    payload=item,
                    metadata=RecordProvenance(
                        provider=self.provider.name,
                        data_type=self.provider.records_key,
                        source_kind="api",
                    ),
                )
            )
        log.info(f"Fetched {len(results)} records from {self.provider.name}")
        return results

    def _params(self, since: Optional[datetime]) -> Dict[str, str]:
        if since is None:
            return {}
        return {self.provider.since_param: since.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")}
