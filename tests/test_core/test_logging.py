"""Tests for logging setup."""

from offboard.core.logging import MASK, _mask_secrets


class TestMaskSecrets:
    """Tests for the secret-masking patcher."""

    def test_masks_credential_keys(self):
        """Should replace values bound under credential names."""
        record = {"extra": {"client_secret": "s3cret", "Password": "hunter2", "tenant_id": "tenant-a"}}

        _mask_secrets(record)

        assert record["extra"] == {"client_secret": MASK, "Password": MASK, "tenant_id": "tenant-a"}
