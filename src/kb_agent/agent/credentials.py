"""Out-of-band credential lookup for the external API tool."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from azure.core.exceptions import AzureError

from kb_agent.errors import ConfigurationError

logger = logging.getLogger(__name__)


class CredentialProvider(Protocol):
    def get_api_token(self) -> str:
        """Return the long-lived API token for the target service."""


class StaticCredentialProvider:
    """Token supplied by the environment (local runs and tests)."""

    def __init__(self, token: str | None) -> None:
        self._token = token

    def get_api_token(self) -> str:
        if not self._token:
            raise ConfigurationError("API token is not configured")
        return self._token


class KeyVaultCredentialProvider:
    """Reads the token from Azure Key Vault on every call.

    The secret is not cached so that rotations apply to the next query.
    """

    def __init__(
        self,
        vault_url: str,
        secret_name: str = "JiraApiToken",
        *,
        client: Any | None = None,
    ) -> None:
        self.vault_url = vault_url
        self.secret_name = secret_name
        if client is None:
            from azure.identity import DefaultAzureCredential
            from azure.keyvault.secrets import SecretClient

            client = SecretClient(vault_url=vault_url, credential=DefaultAzureCredential())
        self._client = client

    def get_api_token(self) -> str:
        try:
            secret = self._client.get_secret(self.secret_name)
        except AzureError as exc:
            logger.error(
                "failed to read secret from key vault",
                extra={"vault_url": self.vault_url, "secret_name": self.secret_name},
            )
            raise ConfigurationError(
                "Unable to retrieve API token from Key Vault",
                details={"secret_name": self.secret_name},
            ) from exc
        if not secret.value:
            raise ConfigurationError(
                "Key Vault secret is empty", details={"secret_name": self.secret_name}
            )
        return secret.value
