"""Credential storage for the catalog API key."""

from __future__ import annotations

import asyncio
import logging
import re

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import Credential

logger = logging.getLogger(__name__)

TMDB_API_KEY = "tmdb_api_key"

API_KEY_RE = re.compile(r"^[A-Za-z0-9]{32,}$")


class CredentialStore:
    """Key-value secret store with a plaintext-config fallback.

    On first use a key supplied through configuration is migrated into the
    store so later runs no longer depend on the plaintext value.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        fallback_api_key: str | None = None,
    ):
        self._session_factory = session_factory
        self._fallback_api_key = fallback_api_key
        self._cached: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get(self, name: str) -> str | None:
        if name in self._cached:
            return self._cached[name]
        async with self._session_factory() as session:
            record = await session.get(Credential, name)
        if record is None:
            return None
        self._cached[name] = record.value
        return record.value

    async def set(self, name: str, value: str) -> None:
        async with self._session_factory() as session:
            record = await session.get(Credential, name)
            if record is None:
                session.add(Credential(name=name, value=value))
            else:
                record.value = value
            await session.commit()
        self._cached[name] = value

    async def delete(self, name: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(Credential).where(Credential.name == name))
            await session.commit()
        self._cached.pop(name, None)

    async def get_api_key(self) -> str | None:
        """Return the catalog API key, migrating the config fallback if needed."""

        stored = await self.get(TMDB_API_KEY)
        if stored:
            return stored
        if not self._fallback_api_key:
            return None
        async with self._lock:
            stored = await self.get(TMDB_API_KEY)
            if stored:
                return stored
            logger.info("Migrating configured TMDB API key into the credential store")
            await self.set(TMDB_API_KEY, self._fallback_api_key)
            return self._fallback_api_key

    async def set_api_key(self, value: str) -> None:
        key = (value or "").strip()
        if not API_KEY_RE.match(key):
            raise ValueError("API key must be at least 32 alphanumeric characters")
        await self.set(TMDB_API_KEY, key)

    async def clear_api_key(self) -> None:
        await self.delete(TMDB_API_KEY)
        # Clearing is explicit; do not silently re-migrate the config value.
        self._fallback_api_key = None

    async def is_configured(self) -> bool:
        return bool(await self.get_api_key())
