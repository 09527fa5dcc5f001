"""Azure credential management.

Wraps ``DefaultAzureCredential``, which picks up Azure CLI logins,
service principal environment variables, managed identity and the
VS Code extension, in that order of preference.
"""

from __future__ import annotations

import logging

from azure.core.exceptions import ClientAuthenticationError
from azure.identity.aio import DefaultAzureCredential
from azure.monitor.query.aio import LogsQueryClient

from ..config import Settings
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

CREDENTIAL_HINT = (
    "Make sure you are logged in:\n"
    "  - Run `az login` to authenticate with Azure CLI\n"
    "  - Or set AZURE_CLIENT_ID, AZURE_CLIENT_SECRET, AZURE_TENANT_ID environment variables"
)


class AzureAuthManager:
    """Lazily creates the credential and the clients that share it."""

    def __init__(self, settings: Settings, credential=None):
        self.settings = settings
        self._credential = credential
        self._logs_client: LogsQueryClient | None = None

    def get_credential(self):
        if self._credential is None:
            try:
                self._credential = DefaultAzureCredential()
            except ValueError as e:
                raise ConfigurationError(
                    f"Failed to initialize Azure credentials: {e}\n{CREDENTIAL_HINT}"
                ) from e
        return self._credential

    async def get_token(self, scope: str) -> str:
        """Acquire a bearer token for ``scope``."""
        try:
            token = await self.get_credential().get_token(scope)
        except ClientAuthenticationError as e:
            raise ConfigurationError(
                f"Failed to acquire an Azure token for {scope}.\n{CREDENTIAL_HINT}"
            ) from e
        return token.token

    async def get_management_token(self) -> str:
        return await self.get_token(self.settings.management_scope)

    async def get_kudu_token(self) -> str:
        return await self.get_token(self.settings.kudu_scope)

    def get_logs_query_client(self) -> LogsQueryClient:
        if self._logs_client is None:
            self._logs_client = LogsQueryClient(self.get_credential())
        return self._logs_client

    async def verify_credentials(self) -> bool:
        """Check that a management token can be acquired."""
        try:
            await self.get_management_token()
        except ConfigurationError as e:
            logger.warning("Credential check failed: %s", e)
            return False
        return True

    async def close(self) -> None:
        if self._logs_client is not None:
            await self._logs_client.close()
            self._logs_client = None
        if self._credential is not None and hasattr(self._credential, "close"):
            await self._credential.close()
