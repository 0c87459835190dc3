"""Credential payloads and the encrypted envelope that stores them."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, Field, field_validator

from lifesync.core.clock import as_utc, utcnow


class CredentialKind(str, Enum):
    OAUTH = "oauth"
    API_KEY = "api_key"
    BASIC_AUTH = "basic_auth"
    CERTIFICATE = "certificate"


class OAuthCredentials(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    token_type: str = "Bearer"
    scope: Optional[str] = None

    @field_validator("expires_at")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class ApiKeyCredentials(BaseModel):
    api_key: str
    secret_key: Optional[str] = None
    environment: Literal["sandbox", "production"] = "production"


class BasicAuthCredentials(BaseModel):
    username: str
    password: str


class CertificateCredentials(BaseModel):
    certificate: str
    private_key: str
    passphrase: Optional[str] = None


CredentialPayload = Union[OAuthCredentials, ApiKeyCredentials, BasicAuthCredentials, CertificateCredentials]

PAYLOAD_MODELS: Dict[CredentialKind, Type[BaseModel]] = {
    CredentialKind.OAUTH: OAuthCredentials,
    CredentialKind.API_KEY: ApiKeyCredentials,
    CredentialKind.BASIC_AUTH: BasicAuthCredentials,
    CredentialKind.CERTIFICATE: CertificateCredentials,
}


class SecretMetadata(BaseModel):
    scopes: Optional[List[str]] = None
    expires_at: Optional[datetime] = None
    last_refreshed: Optional[datetime] = None
    permissions: Optional[List[str]] = None

    @field_validator("expires_at", "last_refreshed")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class StoredSecret(BaseModel):
    """Encrypted credential blob, addressable independently of its Connection."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    owner_id: str
    provider: str
    kind: CredentialKind
    encrypted_payload: str
    key_id: str
    algorithm: str
    metadata: Optional[SecretMetadata] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    class Config:
        from_attributes = True


class SecretSummary(BaseModel):
    """StoredSecret without its payload, safe to list."""

    id: str
    owner_id: str
    provider: str
    kind: CredentialKind
    key_id: str
    algorithm: str
    metadata: Optional[SecretMetadata] = None
    created_at: datetime
    updated_at: datetime
