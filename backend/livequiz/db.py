from __future__ import annotations

import asyncio
import copy
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

from pydantic_settings import BaseSettings, SettingsConfigDict
from pymongo import AsyncMongoClient, ReturnDocument


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    ADMIN_KEY: str = "change-me"
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:8080"
    CORS_ORIGIN_REGEX: Optional[str] = None
    MONGO_URL: Optional[str] = None
    MONGO_DB: str = "livequiz"
    LOG_LEVEL: str = "INFO"

    # Session timing
    REVEAL_DELAY_SEC: int = 3
    TICK_INTERVAL_SEC: float = 1.0
    AUTO_REVEAL_WHEN_ALL_ANSWERED: bool = True
    AUTO_ADVANCE_AFTER_REVEAL: bool = True

    EVENT_PAGE_LIMIT: int = 200


@lru_cache
def get_settings() -> Settings:
    return Settings()


Document = Dict[str, Any]


def _matches(doc: Document, query: Document) -> bool:
    for key, expected in query.items():
        actual = doc.get(key)
        if isinstance(expected, dict):
            unsupported = set(expected) - {"$gt"}
            if unsupported:
                raise ValueError(f"Unsupported query operator(s): {sorted(unsupported)}")
            if actual is None or actual <= expected["$gt"]:
                return False
        elif actual != expected:
            return False
    return True


def _apply_update(doc: Document, update: Document) -> Document:
    for op, fields in update.items():
        if op == "$set":
            doc.update(copy.deepcopy(fields))
        elif op == "$inc":
            for key, amount in fields.items():
                doc[key] = doc.get(key, 0) + amount
        else:
            raise ValueError(f"Unsupported update operator: {op}")
    return doc


class InMemoryCursor:
    """Async cursor over a snapshot of matching documents."""

    def __init__(self, collection: "InMemoryCollection", query: Document):
        self._collection = collection
        self._query = query
        self._sort: Optional[Tuple[str, int]] = None
        self._limit = 0
        self._pending: Optional[List[Document]] = None

    def sort(self, key: str, direction: int = 1) -> "InMemoryCursor":
        self._sort = (key, direction)
        return self

    def limit(self, limit: int) -> "InMemoryCursor":
        self._limit = limit
        return self

    def __aiter__(self) -> "InMemoryCursor":
        return self

    async def __anext__(self) -> Document:
        if self._pending is None:
            docs = await self._collection._snapshot(self._query)
            if self._sort is not None:
                key, direction = self._sort
                docs.sort(key=lambda d: d.get(key), reverse=direction < 0)
            self._pending = docs[: self._limit] if self._limit else docs
        if not self._pending:
            raise StopAsyncIteration
        return self._pending.pop(0)


class InMemoryCollection:
    """The subset of an async Mongo collection the stores use, kept in a list.

    Documents are deep-copied on the way in and out so callers never share
    state with the collection.
    """

    def __init__(self):
        self._docs: List[Document] = []
        self._lock = asyncio.Lock()

    def _position(self, query: Document) -> Optional[int]:
        return next((i for i, doc in enumerate(self._docs) if _matches(doc, query)), None)

    async def _snapshot(self, query: Document) -> List[Document]:
        async with self._lock:
            return [copy.deepcopy(doc) for doc in self._docs if _matches(doc, query)]

    def find(self, query: Optional[Document] = None) -> InMemoryCursor:
        return InMemoryCursor(self, query or {})

    async def find_one(self, query: Document) -> Optional[Document]:
        async with self._lock:
            idx = self._position(query)
            return None if idx is None else copy.deepcopy(self._docs[idx])

    async def insert_one(self, document: Document) -> None:
        async with self._lock:
            self._docs.append(copy.deepcopy(document))

    async def update_one(self, query: Document, update: Document, upsert: bool = False) -> None:
        await self.find_one_and_update(query, update, upsert=upsert)

    async def find_one_and_update(
        self,
        query: Document,
        update: Document,
        *,
        upsert: bool = False,
        return_document: ReturnDocument = ReturnDocument.BEFORE,
    ) -> Optional[Document]:
        async with self._lock:
            idx = self._position(query)
            if idx is None:
                if not upsert:
                    return None
                # upserts seed the new document from the equality fields of the query
                seed = {k: v for k, v in query.items() if not isinstance(v, dict)}
                self._docs.append(_apply_update(copy.deepcopy(seed), update))
                return copy.deepcopy(self._docs[-1]) if return_document == ReturnDocument.AFTER else None

            before = self._docs[idx]
            after = _apply_update(copy.deepcopy(before), update)
            self._docs[idx] = after
            return copy.deepcopy(after if return_document == ReturnDocument.AFTER else before)

    async def delete_one(self, query: Document) -> None:
        async with self._lock:
            idx = self._position(query)
            if idx is not None:
                del self._docs[idx]

    async def delete_many(self, query: Document) -> None:
        async with self._lock:
            self._docs = [doc for doc in self._docs if not _matches(doc, query)]


class InMemoryDatabase:
    def __init__(self):
        self.quizzes = InMemoryCollection()
        self.session_event_counters = InMemoryCollection()
        self.session_events = InMemoryCollection()

    async def close(self) -> None:
        return None


class MongoDatabase:
    """Same collections as ``InMemoryDatabase``, backed by a Mongo server."""

    def __init__(self, url: str, name: str):
        self._client = AsyncMongoClient(url)
        database = self._client[name]
        self.quizzes = database["quizzes"]
        self.session_event_counters = database["session_event_counters"]
        self.session_events = database["session_events"]

    async def close(self) -> None:
        await self._client.close()


def open_database(settings: Optional[Settings] = None):
    settings = settings or get_settings()
    if settings.MONGO_URL:
        return MongoDatabase(settings.MONGO_URL, settings.MONGO_DB)
    return InMemoryDatabase()
