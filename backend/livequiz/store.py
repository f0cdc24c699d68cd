"""Quiz persistence keyed by quiz id."""

from __future__ import annotations

from typing import Any, List, Optional, Protocol

from .models import Quiz


class QuizStore(Protocol):
    async def open(self) -> None: ...

    async def close(self) -> None: ...

    async def get(self, quiz_id: str) -> Optional[Quiz]: ...

    async def put(self, quiz: Quiz) -> None: ...

    async def delete(self, quiz_id: str) -> None: ...

    async def list_all(self) -> List[Quiz]: ...


class CollectionQuizStore:
    """Stores whole quiz documents (players, answers and session state included).

    Works with any collection exposing the async Mongo API: the in-memory
    collection from ``db`` or a real ``pymongo`` collection.
    """

    def __init__(self, collection: Any, database: Any = None):
        self._collection = collection
        self._database = database
        self._open = False

    async def open(self) -> None:
        self._open = True

    async def close(self) -> None:
        if self._database is not None:
            await self._database.close()
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def get(self, quiz_id: str) -> Optional[Quiz]:
        doc = await self._collection.find_one({"id": quiz_id})
        return self._to_quiz(doc) if doc else None

    async def put(self, quiz: Quiz) -> None:
        await self._collection.update_one(
            {"id": quiz.id},
            {"$set": quiz.model_dump(mode="json")},
            upsert=True,
        )

    async def delete(self, quiz_id: str) -> None:
        await self._collection.delete_one({"id": quiz_id})

    async def list_all(self) -> List[Quiz]:
        cursor = self._collection.find({}).sort("created_at", 1)
        return [self._to_quiz(doc) async for doc in cursor]

    @staticmethod
    def _to_quiz(doc: dict) -> Quiz:
        doc = dict(doc)
        doc.pop("_id", None)
        return Quiz.model_validate(doc)


def create_store(database) -> CollectionQuizStore:
    return CollectionQuizStore(database.quizzes, database)
