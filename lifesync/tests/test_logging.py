from lifesync.core.logging import _resolve_level, redact


class TestRedaction:
    def test_masks_bearer_tokens(self):
        assert redact("Authorization: Bearer abc.def-123") == "Authorization: Bearer ***"

    def test_masks_token_fields(self):
        text = redact("payload={'access_token': 'tok-1', 'refresh_token': 'tok-2', 'scope': 'read'}")
        assert "tok-1" not in text
        assert "tok-2" not in text
        assert "'scope': 'read'" in text

    def test_masks_form_encoded_secret(self):
        assert redact("client_secret=s3cr3t&grant_type=refresh_token") == "client_secret=***&grant_type=refresh_token"

    def test_leaves_plain_messages_alone(self):
        message = "Sync completed for connection=abc records=12"
        assert redact(message) == message


class TestLevels:
    def test_aliases_and_unknown_levels(self):
        assert _resolve_level("warn") == "WARNING"
        assert _resolve_level("fatal") == "CRITICAL"
        assert _resolve_level("verbose") == "INFO"
        assert _resolve_level("") == "INFO"
