"""
HashiCorp Vault client for service-ticket secrets.

Uses AppRole authentication. Fails fast on missing configuration.
All paths are scoped to the 'fieldops/' prefix.
"""

import os
import logging
from typing import Dict

import hvac
from hvac.exceptions import InvalidPath, Unauthorized, Forbidden

logger = logging.getLogger(__name__)

_SECRET_PREFIX = "fieldops"

# Singleton instance and cache
_vault_client_instance: "VaultClient | None" = None
_secret_cache: Dict[str, str] = {}


def _ensure_vault_client() -> "VaultClient":
    global _vault_client_instance
    if _vault_client_instance is None:
        _vault_client_instance = VaultClient()
    return _vault_client_instance


class VaultError(Exception):
    """Vault operation failed. Fatal: the store cannot be reached without secrets."""


class VaultClient:
    """Vault client with AppRole auth and env-based config."""

    def __init__(self, vault_addr: str | None = None, vault_namespace: str | None = None):
        self.vault_addr = vault_addr or os.getenv("VAULT_ADDR")
        self.vault_namespace = vault_namespace or os.getenv("VAULT_NAMESPACE")
        self.vault_role_id = os.getenv("VAULT_ROLE_ID")
        self.vault_secret_id = os.getenv("VAULT_SECRET_ID")

        if not self.vault_addr:
            raise VaultError("VAULT_ADDR environment variable is required")

        if not self.vault_role_id or not self.vault_secret_id:
            raise VaultError(
                "VAULT_ROLE_ID and VAULT_SECRET_ID environment variables are required"
            )

        client_kwargs = {"url": self.vault_addr}
        if self.vault_namespace:
            client_kwargs["namespace"] = self.vault_namespace

        self.client = hvac.Client(**client_kwargs)
        self._login()

        logger.info(f"Vault client initialized: {self.vault_addr}")

    def _login(self) -> None:
        try:
            auth_response = self.client.auth.approle.login(
                role_id=self.vault_role_id,
                secret_id=self.vault_secret_id,
            )
        except (Unauthorized, Forbidden) as e:
            logger.error(f"AppRole authentication failed: {e}")
            raise VaultError(f"AppRole authentication failed: {e}") from e

        self.client.token = auth_response["auth"]["client_token"]
        if not self.client.is_authenticated():
            raise VaultError("Vault authentication failed")

    def get_secret(self, path: str, field: str) -> str:
        """
        Read one field of a KV v2 secret under fieldops/.

        Raises:
            VaultError: Path missing or not readable
            KeyError: Field not present in the secret
        """
        full_path = f"{_SECRET_PREFIX}/{path}"

        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=full_path, raise_on_deleted_version=True
            )
        except InvalidPath as e:
            raise VaultError(f"Secret path '{full_path}' not found in Vault") from e
        except (Unauthorized, Forbidden) as e:
            raise VaultError(f"Access denied to secret '{full_path}': {e}") from e

        secret_data = response["data"]["data"]
        if field not in secret_data:
            raise KeyError(
                f"Field '{field}' not found in secret '{full_path}'. "
                f"Available: {', '.join(secret_data)}"
            )
        return secret_data[field]


def get_database_url() -> str:
    """Postgres DSN for the ticket store, cached after the first read."""
    cache_key = f"{_SECRET_PREFIX}/database/url"

    if cache_key not in _secret_cache:
        _secret_cache[cache_key] = _ensure_vault_client().get_secret("database", "url")
    return _secret_cache[cache_key]
