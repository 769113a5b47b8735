"""
Unit tests for the credential vault
"""

import pytest

from core.exceptions import CredentialError
from core.security import CredentialVault


class TestCredentialVault:

    def test_round_trip_drops_empty_values(self, vault):
        token = vault.encrypt({"password": "s3cret", "api_key": None, "secret_key": ""})

        assert "s3cret" not in token
        assert vault.decrypt(token) == {"password": "s3cret"}

    def test_nothing_to_store(self, vault):
        assert vault.encrypt({"password": None}) is None
        assert vault.decrypt(None) == {}

    def test_merge_updates_and_removes(self, vault):
        token = vault.encrypt({"access_key": "AKIA", "secret_key": "old"})

        merged = vault.merge(token, {"secret_key": "new", "access_key": None})

        assert vault.decrypt(merged) == {"secret_key": "new"}

    def test_wrong_key_cannot_decrypt(self, vault):
        token = vault.encrypt({"password": "s3cret"})
        other = CredentialVault(CredentialVault.generate_key())

        with pytest.raises(CredentialError):
            other.decrypt(token)

    def test_invalid_key(self):
        with pytest.raises(CredentialError):
            CredentialVault("not-a-fernet-key")
