"""Async Supabase implementation of CredentialRepository."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from supabase import AsyncClient

from application.models.integrations import CredentialRecord, OAuthTokens, Provider
from backend.crypto_utils import TokenEncryption
from backend.errors import map_backend_error

logger = logging.getLogger(__name__)


class AsyncSupabaseCredentialRepository:
    """Supabase-backed credential repository.

    One row per (user_id, provider) in the integrations table. Access and
    refresh tokens are Fernet-encrypted inside the ``credentials`` JSON column.
    """

    TABLE = "integrations"

    def __init__(self, client: AsyncClient, encryption: TokenEncryption) -> None:
        self._client = client
        self._encryption = encryption

    async def get(self, provider: Provider, user_id: str) -> Optional[CredentialRecord]:
        result = await self._execute(
            self._client.table(self.TABLE)
            .select("*")
            .eq("user_id", user_id)
            .eq("provider", Provider(provider).value)
            .limit(1)
        )
        if not result.data:
            return None
        return self._to_record(result.data[0])

    async def save(self, record: CredentialRecord) -> None:
        await self._execute(
            self._client.table(self.TABLE)
            .upsert(
                {
                    "user_id": record.user_id,
                    "provider": record.provider.value,
                    "email": record.email,
                    "credentials": self._encrypt_tokens(record.tokens),
                    "is_active": record.is_active,
                    "updated_at": record.updated_at.isoformat(),
                },
                on_conflict="user_id,provider",
            )
        )
        logger.info("Saved %s credentials for user %s", record.provider.value, record.user_id)

    async def update_tokens(self, provider: Provider, user_id: str, tokens: OAuthTokens) -> None:
        await self._execute(
            self._client.table(self.TABLE)
            .update(
                {
                    "credentials": self._encrypt_tokens(tokens),
                    "updated_at": datetime.now(timezone.utc).isoformat(),
                }
            )
            .eq("user_id", user_id)
            .eq("provider", Provider(provider).value)
        )

    async def deactivate(self, provider: Provider, user_id: str) -> bool:
        result = await self._execute(
            self._client.table(self.TABLE)
            .update(
                {
                    "is_active": False,
                    "updated_at": datetime.now(timezone.utc).isoformat(),
                }
            )
            .eq("user_id", user_id)
            .eq("provider", Provider(provider).value)
        )
        return len(result.data) > 0 if result.data else False

    async def _execute(self, query: Any) -> Any:
        try:
            return await query.execute()
        except Exception as e:
            logger.error("Supabase %s query failed: %s", self.TABLE, e)
            raise map_backend_error(e) from e

    def _encrypt_tokens(self, tokens: OAuthTokens) -> Dict[str, Any]:
        return {
            "access_token": self._encryption.encrypt(tokens.access_token),
            "refresh_token": self._encryption.encrypt_optional(tokens.refresh_token),
            "expires_at": tokens.expires_at,
            "scope": tokens.scope,
            "token_type": tokens.token_type,
        }

    def _to_record(self, row: Dict[str, Any]) -> CredentialRecord:
        credentials = row.get("credentials") or {}
        tokens = OAuthTokens(
            access_token=self._encryption.decrypt(credentials["access_token"]),
            refresh_token=self._encryption.decrypt_optional(credentials.get("refresh_token")),
            expires_at=credentials.get("expires_at", 0),
            scope=credentials.get("scope") or "",
            token_type=credentials.get("token_type") or "Bearer",
        )
        extra = {}
        if row.get("updated_at"):
            extra["updated_at"] = datetime.fromisoformat(row["updated_at"])
        return CredentialRecord(
            provider=Provider(row["provider"]),
            user_id=row["user_id"],
            email=row.get("email") or "",
            tokens=tokens,
            is_active=bool(row.get("is_active", True)),
            **extra,
        )
