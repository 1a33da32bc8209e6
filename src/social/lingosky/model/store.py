"""
Redis-backed storage for PKCE records and sessions.

Records are serialized to JSON and encrypted with Fernet before they are written,
since they hold PKCE verifiers, access tokens and DPoP private keys. Key layout:

- state:<state>  PKCE record, 600 seconds
- pkce:<state>   PKCE record, 600 seconds
- sess:<id>      session, max(60, expires_in) seconds
"""

import logging
from typing import Optional, Type, TypeVar

from cryptography.fernet import Fernet, InvalidToken
from pydantic import BaseModel, ValidationError
from redis import asyncio as redis

from social.lingosky.model.oauth import OAuthSession, PKCERecord

logger = logging.getLogger(__name__)

PKCE_TTL_SECONDS = 600
MIN_SESSION_TTL_SECONDS = 60

STATE_PREFIX = "state:"
PKCE_PREFIX = "pkce:"
SESSION_PREFIX = "sess:"

RecordT = TypeVar("RecordT", bound=BaseModel)


def session_ttl(expires_in: int) -> int:
    return max(MIN_SESSION_TTL_SECONDS, expires_in)


class OAuthStore:
    """Encrypted key-value persistence for the OAuth flow."""

    def __init__(self, redis_client: redis.Redis, encryption_key: Fernet):
        self.redis_client = redis_client
        self.encryption_key = encryption_key

    def _encrypt(self, record: BaseModel) -> bytes:
        return self.encryption_key.encrypt(record.model_dump_json().encode("utf-8"))

    async def _read(self, key: str, model: Type[RecordT]) -> Optional[RecordT]:
        value = await self.redis_client.get(key)
        if value is None:
            return None
        if isinstance(value, str):
            value = value.encode("utf-8")
        try:
            return model.model_validate_json(self.encryption_key.decrypt(value))
        except (InvalidToken, ValidationError):
            logger.warning("Discarding unreadable record at %s", key.split(":", 1)[0])
            return None

    async def save_pkce_record(self, record: PKCERecord) -> None:
        encrypted = self._encrypt(record)
        async with self.redis_client.pipeline() as pipe:
            pipe.set(f"{STATE_PREFIX}{record.state}", encrypted, ex=PKCE_TTL_SECONDS)
            pipe.set(f"{PKCE_PREFIX}{record.state}", encrypted, ex=PKCE_TTL_SECONDS)
            await pipe.execute()

    async def get_pkce_record(self, state: str) -> Optional[PKCERecord]:
        return await self._read(f"{PKCE_PREFIX}{state}", PKCERecord)

    async def delete_pkce_record(self, state: str) -> None:
        await self.redis_client.delete(f"{STATE_PREFIX}{state}", f"{PKCE_PREFIX}{state}")

    async def create_session(self, session: OAuthSession) -> str:
        await self.redis_client.set(
            f"{SESSION_PREFIX}{session.session_id}",
            self._encrypt(session),
            ex=session_ttl(session.expires_in),
        )
        return session.session_id

    async def get_session(self, session_id: str) -> Optional[OAuthSession]:
        return await self._read(f"{SESSION_PREFIX}{session_id}", OAuthSession)

    async def delete_session(self, session_id: str) -> None:
        await self.redis_client.delete(f"{SESSION_PREFIX}{session_id}")
