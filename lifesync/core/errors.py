"""Error taxonomy for the ingestion core.

Expected failure modes (not found, rejected tokens, invalid records) are
reported as structured results by the services. The exceptions below are
raised where a caller has to stop: programmer errors, invariant violations
and the internal steps of a sync that the scheduler records as failures.
"""

from __future__ import annotations

from typing import List, Optional


class LifeSyncError(Exception):
    """Base class for all domain errors."""

    retryable: bool = False


class ValidationError(LifeSyncError):
    """Inbound record is malformed or incomplete. Not retried automatically."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = list(errors or [])


class ProviderConnectionError(LifeSyncError):
    """Provider unreachable, or it rejected a token operation."""

    retryable = True


class UnsupportedProviderError(LifeSyncError):
    """Caller asked for a provider that is not in the registry."""

    def __init__(self, provider_id: str):
        super().__init__(f"Unsupported provider: {provider_id}")
        self.provider_id = provider_id


class CredentialError(LifeSyncError):
    """Secret is missing, expired or corrupt. Needs refresh or re-authorization."""


class IndexConsistencyError(LifeSyncError):
    """Record store index diverged from the primary table."""


class ConnectionStateError(LifeSyncError):
    """Illegal connection lifecycle transition."""


class ConnectionNotFoundError(LifeSyncError):
    def __init__(self, connection_id: str):
        super().__init__(f"Connection not found: {connection_id}")
        self.connection_id = connection_id


class PolicyNotFoundError(LifeSyncError):
    def __init__(self, connection_id: str):
        super().__init__(f"No sync configuration found for connection: {connection_id}")
        self.connection_id = connection_id
