"""Secret Store - encrypted credential storage scoped to an owner."""

from __future__ import annotations

from datetime import timedelta
from typing import Any, List, Mapping, Optional, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from lifesync.core.clock import Clock, utcnow
from lifesync.core.crypto import SecretCipher, get_cipher, mask_credentials
from lifesync.core.errors import CredentialError
from lifesync.core.logging import get_logger
from lifesync.repositories.base import SecretRepository
from lifesync.schemas.secret import (
    PAYLOAD_MODELS,
    CredentialKind,
    CredentialPayload,
    OAuthCredentials,
    SecretMetadata,
    SecretSummary,
    StoredSecret,
)

log = get_logger("secret_store")

PayloadInput = Union[CredentialPayload, Mapping[str, Any]]


class SecretStore:
    """Stores credential payloads encrypted at rest.

    Every read and write checks the caller's owner id against the stored
    owner. A mismatch is reported exactly like a missing secret.
    """

    def __init__(
        self,
        repository: SecretRepository,
        cipher: Optional[SecretCipher] = None,
        clock: Clock = utcnow,
    ):
        self.repository = repository
        self.cipher = cipher or get_cipher()
        self.clock = clock

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------
    def store(
        self,
        owner_id: str,
        provider: str,
        kind: CredentialKind,
        payload: PayloadInput,
        metadata: Optional[SecretMetadata] = None,
    ) -> str:
        kind = CredentialKind(kind)
        model = self._coerce(kind, payload)
        now = self.clock()
        secret = StoredSecret(
            owner_id=owner_id,
            provider=provider,
            kind=kind,
            encrypted_payload=self.cipher.encrypt_object(model.model_dump(mode="json")),
            key_id=self.cipher.key_id,
            algorithm=self.cipher.algorithm,
            metadata=metadata,
            created_at=now,
            updated_at=now,
        )
        self.repository.put(secret)
        log.info(
            f"Stored {kind.value} secret id={secret.id} owner={owner_id} provider={provider} "
            f"payload={mask_credentials(model.model_dump(mode='json'), kind.value)}"
        )
        return secret.id

    def retrieve(self, secret_id: str, owner_id: str) -> Optional[CredentialPayload]:
        secret = self._owned(secret_id, owner_id)
        if secret is None:
            return None
        return self._decrypt(secret)

    def update(
        self,
        secret_id: str,
        owner_id: str,
        payload: PayloadInput,
        metadata: Optional[SecretMetadata] = None,
    ) -> bool:
        secret = self._owned(secret_id, owner_id)
        if secret is None:
            return False

        model = self._coerce(secret.kind, payload)
        secret.encrypted_payload = self.cipher.encrypt_object(model.model_dump(mode="json"))
        secret.key_id = self.cipher.key_id
        secret.algorithm = self.cipher.algorithm
        if metadata is not None:
            secret.metadata = metadata
        secret.updated_at = self.clock()
        self.repository.put(secret)
        log.info(f"Updated secret id={secret_id} owner={owner_id}")
        return True

    def delete(self, secret_id: str, owner_id: str) -> bool:
        if self._owned(secret_id, owner_id) is None:
            return False
        deleted = self.repository.delete(secret_id)
        if deleted:
            log.info(f"Deleted secret id={secret_id} owner={owner_id}")
        return deleted

    def describe(self, secret_id: str, owner_id: str) -> Optional[SecretSummary]:
        secret = self._owned(secret_id, owner_id)
        if secret is None:
            return None
        return SecretSummary.model_validate(secret.model_dump(exclude={"encrypted_payload"}))

    def list_for_owner(self, owner_id: str) -> List[SecretSummary]:
        return [
            SecretSummary.model_validate(s.model_dump(exclude={"encrypted_payload"}))
            for s in self.repository.list_for_owner(owner_id)
        ]

    # -------------------------------------------------------------------------
    # Health checks
    # -------------------------------------------------------------------------
    def is_expired(self, secret_id: str, owner_id: str) -> bool:
        secret = self._owned(secret_id, owner_id)
        if secret is None:
            return True

        now = self.clock()
        if secret.metadata and secret.metadata.expires_at and secret.metadata.expires_at <= now:
            return True

        if secret.kind == CredentialKind.OAUTH:
            try:
                payload = self._decrypt(secret)
            except CredentialError as exc:
                log.warning(f"Treating unreadable secret id={secret_id} as expired: {exc}")
                return True
            if payload.expires_at and payload.expires_at <= now:
                return True

        return False

    def validate_integrity(self, secret_id: str, owner_id: str) -> bool:
        """Decrypt and check the payload has the structure its kind requires."""
        secret = self._owned(secret_id, owner_id)
        if secret is None:
            return False
        try:
            self._decrypt(secret)
        except CredentialError as exc:
            log.warning(f"Integrity check failed for secret id={secret_id}: {exc}")
            return False
        return True

    # -------------------------------------------------------------------------
    # OAuth maintenance and key rotation
    # -------------------------------------------------------------------------
    def refresh_oauth(self, secret_id: str, owner_id: str, credentials: OAuthCredentials) -> bool:
        secret = self._owned(secret_id, owner_id)
        if secret is None or secret.kind != CredentialKind.OAUTH:
            return False

        metadata = (secret.metadata or SecretMetadata()).model_copy()
        metadata.expires_at = credentials.expires_at
        metadata.last_refreshed = self.clock()
        if credentials.scope:
            metadata.scopes = credentials.scope.split()
        return self.update(secret_id, owner_id, credentials, metadata)

    def get_expiring(self, owner_id: str, days_ahead: int = 7) -> List[SecretSummary]:
        """Secrets whose metadata expiry falls before now + ``days_ahead``."""
        cutoff = self.clock() + timedelta(days=days_ahead)
        return [
            s
            for s in self.list_for_owner(owner_id)
            if s.metadata and s.metadata.expires_at and s.metadata.expires_at <= cutoff
        ]

    def rotate_keys(self, owner_id: str) -> int:
        """Re-encrypt every payload not yet under the primary key. Returns the count."""
        rotated = 0
        for secret in self.repository.list_for_owner(owner_id):
            if secret.key_id == self.cipher.key_id:
                continue
            secret.encrypted_payload = self.cipher.rotate(secret.encrypted_payload)
            secret.key_id = self.cipher.key_id
            secret.algorithm = self.cipher.algorithm
            secret.updated_at = self.clock()
            self.repository.put(secret)
            rotated += 1

        if rotated:
            log.info(f"Rotated {rotated} secret(s) to key_id={self.cipher.key_id} for owner={owner_id}")
        return rotated

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------
    def _owned(self, secret_id: str, owner_id: str) -> Optional[StoredSecret]:
        secret = self.repository.get(secret_id)
        if secret is None or secret.owner_id != owner_id:
            return None
        return secret

    def _decrypt(self, secret: StoredSecret) -> CredentialPayload:
        data = self.cipher.decrypt_object(secret.encrypted_payload)
        try:
            return PAYLOAD_MODELS[secret.kind].model_validate(data)
        except PydanticValidationError as exc:
            raise CredentialError(f"Stored {secret.kind.value} payload is malformed") from exc

    @staticmethod
    def _coerce(kind: CredentialKind, payload: PayloadInput) -> BaseModel:
        model_cls = PAYLOAD_MODELS[kind]
        if isinstance(payload, model_cls):
            return payload
        if isinstance(payload, BaseModel):
            payload = payload.model_dump()
        try:
            return model_cls.model_validate(payload)
        except PydanticValidationError as exc:
            raise CredentialError(f"Invalid {kind.value} credential payload") from exc
