from __future__ import annotations

from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument

from .utils import now_ts

RESET_EVENT = "session_reset"


class EventStore:
    """Per-quiz append-only event log that clients poll over HTTP.

    Each quiz has a counter document in ``session_event_counters``; events in
    ``session_events`` carry the counter value as ``seq``. The counter is never
    rewound while the quiz exists, so ``after=<last seen seq>`` stays valid
    across a reset.
    """

    def __init__(self, database):
        self.counters = database.session_event_counters
        self.events = database.session_events

    async def _next_seq(self, quiz_id: str) -> int:
        counter = await self.counters.find_one_and_update(
            {"_id": quiz_id},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        if counter is None:
            # Some Mongo-compatible servers apply the upsert but return nothing.
            counter = await self.counters.find_one({"_id": quiz_id})
        if counter is None or "seq" not in counter:
            await self.counters.update_one({"_id": quiz_id}, {"$set": {"seq": 1}}, upsert=True)
            return 1
        return int(counter["seq"])

    async def append(self, quiz_id: str, payload: Dict[str, Any]) -> int:
        seq = await self._next_seq(quiz_id)
        await self.events.insert_one({"quiz_id": quiz_id, "seq": seq, "timestamp": now_ts(), "payload": payload})
        return seq

    async def list(self, quiz_id: str, after: Optional[int] = None, limit: int = 200) -> List[Dict[str, Any]]:
        """Events of one quiz with ``seq > after``, oldest first."""
        query: Dict[str, Any] = {"quiz_id": quiz_id}
        if after is not None:
            query["seq"] = {"$gt": after}

        return [
            {"seq": doc["seq"], "timestamp": doc.get("timestamp"), "payload": doc.get("payload", {})}
            async for doc in self.events.find(query).sort("seq", 1).limit(limit)
        ]

    async def latest_seq(self, quiz_id: str) -> Optional[int]:
        counter = await self.counters.find_one({"_id": quiz_id})
        return int(counter["seq"]) if counter and "seq" in counter else None

    async def reset(self, quiz_id: str) -> int:
        """Drop the quiz's events and append a ``session_reset`` marker."""
        await self.events.delete_many({"quiz_id": quiz_id})
        return await self.append(quiz_id, {"type": RESET_EVENT})

    async def drop(self, quiz_id: str) -> None:
        await self.events.delete_many({"quiz_id": quiz_id})
        await self.counters.delete_many({"_id": quiz_id})
