"""Port interface for OAuth credential storage."""

from typing import Optional, Protocol

from application.models.integrations import CredentialRecord, OAuthTokens, Provider


class CredentialRepository(Protocol):
    """Repository protocol for per-(user, provider) OAuth credentials."""

    async def get(self, provider: Provider, user_id: str) -> Optional[CredentialRecord]:
        """Get the stored record, active or not. None if never connected."""
        ...

    async def save(self, record: CredentialRecord) -> None:
        """Insert or replace the record for (record.user_id, record.provider)."""
        ...

    async def update_tokens(self, provider: Provider, user_id: str, tokens: OAuthTokens) -> None:
        """Replace the tokens of an existing record."""
        ...

    async def deactivate(self, provider: Provider, user_id: str) -> bool:
        """Mark the record inactive.

        Returns:
            True if a record existed, False otherwise.
        """
        ...
