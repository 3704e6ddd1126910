"""In-memory CredentialRepository for development and tests.

Used when Supabase is not configured. State is lost on restart.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from application.models.integrations import CredentialRecord, OAuthTokens, Provider

logger = logging.getLogger(__name__)


class InMemoryCredentialRepository:
    def __init__(self) -> None:
        self._records: Dict[Tuple[str, str], CredentialRecord] = {}

    async def get(self, provider: Provider, user_id: str) -> Optional[CredentialRecord]:
        record = self._records.get((Provider(provider).value, user_id))
        return record.model_copy(deep=True) if record else None

    async def save(self, record: CredentialRecord) -> None:
        self._records[(record.provider.value, record.user_id)] = record.model_copy(deep=True)
        logger.info("Stored %s credentials for user %s", record.provider.value, record.user_id)

    async def update_tokens(self, provider: Provider, user_id: str, tokens: OAuthTokens) -> None:
        key = (Provider(provider).value, user_id)
        existing = self._records.get(key)
        if existing is None:
            logger.warning("No %s credentials to update for user %s", key[0], user_id)
            return
        self._records[key] = existing.with_tokens(tokens.model_copy())

    async def deactivate(self, provider: Provider, user_id: str) -> bool:
        key = (Provider(provider).value, user_id)
        existing = self._records.get(key)
        if existing is None:
            return False
        self._records[key] = existing.model_copy(
            update={"is_active": False, "updated_at": datetime.now(timezone.utc)}
        )
        logger.info("Deactivated %s credentials for user %s", key[0], user_id)
        return True
