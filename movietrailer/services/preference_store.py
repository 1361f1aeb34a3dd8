"""Persistence for single-document preference profiles."""

from __future__ import annotations

from typing import Any, Protocol

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import PreferenceDocument

DEFAULT_DOCUMENT_KEY = "recommendation_preferences"


class PreferenceStore(Protocol):
    async def load(self) -> dict[str, Any] | None: ...

    async def save(self, payload: dict[str, Any]) -> None: ...

    async def clear(self) -> None: ...


class DatabasePreferenceStore:
    """Store the whole profile as one JSON row."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        key: str = DEFAULT_DOCUMENT_KEY,
    ):
        self._session_factory = session_factory
        self._key = key

    async def load(self) -> dict[str, Any] | None:
        async with self._session_factory() as session:
            record = await session.get(PreferenceDocument, self._key)
            if record is None:
                return None
            payload = record.payload
        return payload if isinstance(payload, dict) else None

    async def save(self, payload: dict[str, Any]) -> None:
        # The stored payload may not decode, so the old row is never read here.
        async with self._session_factory() as session:
            await session.execute(
                delete(PreferenceDocument).where(PreferenceDocument.key == self._key)
            )
            session.add(PreferenceDocument(key=self._key, payload=payload))
            await session.commit()

    async def clear(self) -> None:
        async with self._session_factory() as session:
            await session.execute(
                delete(PreferenceDocument).where(PreferenceDocument.key == self._key)
            )
            await session.commit()
