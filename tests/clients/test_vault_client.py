"""Tests for VaultClient - HashiCorp Vault secrets management."""

from unittest.mock import MagicMock

import pytest
from hvac.exceptions import Forbidden, InvalidPath

import clients.vault_client as vault_module
from clients.vault_client import VaultClient, VaultError, get_database_url


@pytest.fixture
def vault_env(monkeypatch):
    monkeypatch.setenv("VAULT_ADDR", "https://vault.test:8200")
    monkeypatch.setenv("VAULT_ROLE_ID", "role")
    monkeypatch.setenv("VAULT_SECRET_ID", "secret")
    monkeypatch.delenv("VAULT_NAMESPACE", raising=False)


@pytest.fixture
def hvac_client(vault_env, monkeypatch):
    """hvac.Client stand-in that authenticates successfully."""
    client = MagicMock()
    client.auth.approle.login.return_value = {"auth": {"client_token": "s.token"}}
    client.is_authenticated.return_value = True
    client.secrets.kv.v2.read_secret_version.return_value = {
        "data": {"data": {"url": "postgresql://fieldops@db/fieldops"}}
    }
    monkeypatch.setattr(vault_module.hvac, "Client", MagicMock(return_value=client))
    return client


@pytest.fixture(autouse=True)
def reset_vault_singleton():
    vault_module._vault_client_instance = None
    vault_module._secret_cache.clear()
    yield
    vault_module._vault_client_instance = None
    vault_module._secret_cache.clear()


class TestVaultClientInit:
    """Initialization and authentication."""

    def test_missing_vault_addr_raises(self, vault_env, monkeypatch):
        monkeypatch.delenv("VAULT_ADDR")

        with pytest.raises(VaultError, match="VAULT_ADDR"):
            VaultClient()

    def test_missing_approle_credentials_raises(self, vault_env, monkeypatch):
        monkeypatch.delenv("VAULT_ROLE_ID")

        with pytest.raises(VaultError, match="VAULT_ROLE_ID"):
            VaultClient()

    def test_rejected_approle_raises(self, hvac_client):
        hvac_client.auth.approle.login.side_effect = Forbidden("permission denied")

        with pytest.raises(VaultError, match="AppRole authentication failed"):
            VaultClient()

    def test_valid_approle_authenticates(self, hvac_client):
        client = VaultClient()

        assert client.client.token == "s.token"
        hvac_client.auth.approle.login.assert_called_once_with(role_id="role", secret_id="secret")


class TestGetSecret:
    """Secret retrieval."""

    def test_reads_prefixed_path(self, hvac_client):
        url = VaultClient().get_secret("database", "url")

        assert url == "postgresql://fieldops@db/fieldops"
        hvac_client.secrets.kv.v2.read_secret_version.assert_called_once_with(
            path="fieldops/database", raise_on_deleted_version=True
        )

    def test_missing_path_raises(self, hvac_client):
        hvac_client.secrets.kv.v2.read_secret_version.side_effect = InvalidPath()

        with pytest.raises(VaultError, match="not found"):
            VaultClient().get_secret("nope", "url")

    def test_missing_field_raises(self, hvac_client):
        with pytest.raises(KeyError, match="admin_url"):
            VaultClient().get_secret("database", "admin_url")


class TestDatabaseUrl:
    """get_database_url() caching."""

    def test_cached_after_first_read(self, hvac_client):
        assert get_database_url() == "postgresql://fieldops@db/fieldops"
        assert get_database_url() == "postgresql://fieldops@db/fieldops"

        assert hvac_client.secrets.kv.v2.read_secret_version.call_count == 1
