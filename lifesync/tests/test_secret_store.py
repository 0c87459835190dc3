"""Secret store tests: encryption at rest, owner scoping, expiry and key rotation"""

from datetime import timedelta

import pytest

from lifesync.core.crypto import SecretCipher, mask_credentials, mask_token
from lifesync.core.errors import CredentialError
from lifesync.repositories.memory import InMemorySecretRepository
from lifesync.schemas.secret import ApiKeyCredentials, CredentialKind, OAuthCredentials, SecretMetadata
from lifesync.services.secret_store import SecretStore
from lifesync.tests.conftest import TEST_KEY, FakeClock

OLD_KEY = "previous-encryption-key-abcdefghijklmnop"


@pytest.fixture
def repo():
    return InMemorySecretRepository()


@pytest.fixture
def store(repo, clock):
    return SecretStore(repo, cipher=SecretCipher(TEST_KEY), clock=clock)


class TestSecretStorage:
    """Store, retrieve, update and delete"""

    def test_round_trip(self, store):
        secret_id = store.store("user-1", "acme_bank", CredentialKind.API_KEY, {"api_key": "sk_live_123456"})
        creds = store.retrieve(secret_id, "user-1")
        assert isinstance(creds, ApiKeyCredentials)
        assert creds.api_key == "sk_live_123456"

    def test_payload_is_encrypted_at_rest(self, store, repo):
        secret_id = store.store("user-1", "acme_bank", CredentialKind.API_KEY, {"api_key": "sk_live_123456"})
        stored = repo.get(secret_id)
        assert "sk_live_123456" not in stored.encrypted_payload
        assert stored.key_id == store.cipher.key_id

    def test_same_payload_encrypts_differently(self, store, repo):
        a = store.store("user-1", "acme_bank", CredentialKind.API_KEY, {"api_key": "same"})
        b = store.store("user-1", "acme_bank", CredentialKind.API_KEY, {"api_key": "same"})
        assert repo.get(a).encrypted_payload != repo.get(b).encrypted_payload

    def test_other_owner_sees_nothing(self, store):
        secret_id = store.store("user-1", "acme_bank", CredentialKind.API_KEY, {"api_key": "k"})
        assert store.retrieve(secret_id, "user-2") is None
        assert store.describe(secret_id, "user-2") is None
        assert store.update(secret_id, "user-2", {"api_key": "stolen"}) is False
        assert store.delete(secret_id, "user-2") is False
        assert store.retrieve(secret_id, "user-1").api_key == "k"

    def test_invalid_payload_rejected(self, store):
        with pytest.raises(CredentialError):
            store.store("user-1", "acme_bank", CredentialKind.BASIC_AUTH, {"username": "only"})

    def test_update_and_delete(self, store):
        secret_id = store.store("user-1", "acme_bank", CredentialKind.API_KEY, {"api_key": "old"})
        assert store.update(secret_id, "user-1", {"api_key": "new"}) is True
        assert store.retrieve(secret_id, "user-1").api_key == "new"
        assert store.delete(secret_id, "user-1") is True
        assert store.retrieve(secret_id, "user-1") is None
        assert store.delete(secret_id, "user-1") is False

    def test_describe_omits_payload(self, store):
        secret_id = store.store("user-1", "acme_bank", CredentialKind.API_KEY, {"api_key": "k"})
        summary = store.describe(secret_id, "user-1")
        assert summary.kind == CredentialKind.API_KEY
        assert not hasattr(summary, "encrypted_payload")
        assert [s.id for s in store.list_for_owner("user-1")] == [secret_id]


class TestSecretHealth:
    """Expiry and integrity checks"""

    def test_oauth_token_expiry(self, store, clock):
        creds = OAuthCredentials(access_token="a", expires_at=clock() + timedelta(minutes=5))
        secret_id = store.store("user-1", "acme_health", CredentialKind.OAUTH, creds)
        assert store.is_expired(secret_id, "user-1") is False
        clock.advance(minutes=6)
        assert store.is_expired(secret_id, "user-1") is True

    def test_metadata_expiry(self, store, clock):
        secret_id = store.store(
            "user-1",
            "acme_bank",
            CredentialKind.API_KEY,
            {"api_key": "k"},
            SecretMetadata(expires_at=clock() - timedelta(seconds=1)),
        )
        assert store.is_expired(secret_id, "user-1") is True

    def test_missing_secret_counts_as_expired(self, store):
        assert store.is_expired("nope", "user-1") is True

    def test_corrupt_payload_fails_integrity(self, store, repo):
        secret_id = store.store("user-1", "acme_health", CredentialKind.OAUTH, {"access_token": "a"})
        assert store.validate_integrity(secret_id, "user-1") is True

        stored = repo.get(secret_id)
        stored.encrypted_payload = stored.encrypted_payload[:-8] + "AAAAAAAA"
        repo.put(stored)

        assert store.validate_integrity(secret_id, "user-1") is False
        assert store.is_expired(secret_id, "user-1") is True
        with pytest.raises(CredentialError):
            store.retrieve(secret_id, "user-1")

    def test_get_expiring(self, store, clock):
        soon = store.store(
            "user-1", "a", CredentialKind.API_KEY, {"api_key": "k"}, SecretMetadata(expires_at=clock() + timedelta(days=3))
        )
        store.store(
            "user-1", "b", CredentialKind.API_KEY, {"api_key": "k"}, SecretMetadata(expires_at=clock() + timedelta(days=30))
        )
        store.store("user-1", "c", CredentialKind.API_KEY, {"api_key": "k"})
        assert [s.id for s in store.get_expiring("user-1", days_ahead=7)] == [soon]

    def test_refresh_oauth_updates_metadata(self, store, clock):
        secret_id = store.store("user-1", "acme_health", CredentialKind.OAUTH, {"access_token": "a"})
        refreshed = OAuthCredentials(access_token="b", expires_at=clock() + timedelta(hours=1), scope="x y")
        assert store.refresh_oauth(secret_id, "user-1", refreshed) is True

        summary = store.describe(secret_id, "user-1")
        assert summary.metadata.last_refreshed == clock()
        assert summary.metadata.scopes == ["x", "y"]
        assert store.retrieve(secret_id, "user-1").access_token == "b"


class TestKeyRotation:
    """Re-encryption under a new primary key"""

    def test_rotate_keys(self, repo):
        clock = FakeClock()
        old_store = SecretStore(repo, cipher=SecretCipher(OLD_KEY), clock=clock)
        secret_id = old_store.store("user-1", "acme_bank", CredentialKind.API_KEY, {"api_key": "k"})

        new_store = SecretStore(repo, cipher=SecretCipher(TEST_KEY, [OLD_KEY]), clock=clock)
        assert new_store.retrieve(secret_id, "user-1").api_key == "k"
        assert new_store.rotate_keys("user-1") == 1
        assert new_store.rotate_keys("user-1") == 0

        current_only = SecretStore(repo, cipher=SecretCipher(TEST_KEY), clock=clock)
        assert current_only.retrieve(secret_id, "user-1").api_key == "k"


class TestMasking:
    def test_mask_token(self):
        assert mask_token("abcdefghijkl") == "abcd****ijkl"
        assert mask_token("short") == "*****"

    def test_mask_credentials(self):
        masked = mask_credentials({"username": "ann", "password": "hunter2"}, "basic_auth")
        assert masked == {"username": "ann", "password": "***masked***"}
        masked = mask_credentials({"access_token": "abcdefghijkl", "refresh_token": "mnopqrstuvwx"}, "oauth")
        assert "efgh" not in masked["access_token"]
