from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from .db import Settings, get_settings
from .engine import SessionEngine
from .errors import QuizExists, QuizNotFound
from .events import RESET_EVENT, EventStore
from .models import Answer, LeaderboardEntry, Phase, Player, PlayerView, Quiz, SessionSnapshot
from .session import Transition
from .store import QuizStore
from .timer import Clock

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GameController:
    """Owns one ``SessionEngine`` per quiz and serialises access to it.

    Every command runs under a per-quiz ``asyncio.Lock``; the engine events it
    produced are then persisted (``QuizStore.put``) and appended to the
    polling event log. A background task per running quiz drives ``tick()``.
    """

    def __init__(
        self,
        store: QuizStore,
        event_store: EventStore,
        settings: Optional[Settings] = None,
        *,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.event_store = event_store
        self.settings = settings or get_settings()
        self._clock = clock
        self.locks: Dict[str, asyncio.Lock] = {}
        self.engines: Dict[str, SessionEngine] = {}
        self._pending: Dict[str, List[Tuple[str, Dict[str, Any]]]] = {}
        self._clock_tasks: Dict[str, asyncio.Task] = {}

    def _lock(self, quiz_id: str) -> asyncio.Lock:
        self.locks.setdefault(quiz_id, asyncio.Lock())
        return self.locks[quiz_id]

    # --- quiz registry ---

    async def create_quiz(self, quiz: Quiz) -> Quiz:
        async with self._lock(quiz.id):
            if await self.store.get(quiz.id) is not None:
                raise QuizExists()
            await self.store.put(quiz)
            await self.event_store.reset(quiz.id)
        logger.info("quiz %s created with %d questions", quiz.id, len(quiz.questions))
        return quiz

    async def get_quiz(self, quiz_id: str) -> Quiz:
        return await self._run(quiz_id, lambda engine: engine.to_quiz())

    async def list_quizzes(self) -> List[Quiz]:
        return await self.store.list_all()

    async def delete_quiz(self, quiz_id: str) -> None:
        async with self._lock(quiz_id):
            if await self.store.get(quiz_id) is None:
                raise QuizNotFound()
            await self._cancel_clock(quiz_id)
            self.engines.pop(quiz_id, None)
            self._pending.pop(quiz_id, None)
            await self.store.delete(quiz_id)
            await self.event_store.drop(quiz_id)
        self.locks.pop(quiz_id, None)
        logger.info("quiz %s deleted", quiz_id)

    # --- player commands ---

    async def join(self, quiz_id: str, name: str) -> Player:
        return await self._run(quiz_id, lambda engine: engine.join(name))

    async def leave(self, quiz_id: str, player_id: str) -> None:
        await self._run(quiz_id, lambda engine: engine.leave(player_id))

    async def submit_answer(
        self, quiz_id: str, player_id: str, option_index: int, question_index: Optional[int] = None
    ) -> Answer:
        return await self._run(quiz_id, lambda engine: engine.submit_answer(player_id, option_index, question_index))

    # --- host commands ---

    async def approve(self, quiz_id: str, player_id: str) -> Player:
        return await self._run(quiz_id, lambda engine: engine.approve(player_id))

    async def start(self, quiz_id: str) -> SessionSnapshot:
        snapshot = await self._run(quiz_id, lambda engine: self._snapshot_after(engine.start, engine))
        self._ensure_clock(quiz_id)
        return snapshot

    async def advance(self, quiz_id: str) -> SessionSnapshot:
        return await self._run(quiz_id, lambda engine: self._snapshot_after(engine.advance, engine))

    async def pause(self, quiz_id: str) -> SessionSnapshot:
        return await self._run(quiz_id, lambda engine: self._snapshot_after(engine.pause, engine))

    async def resume(self, quiz_id: str) -> SessionSnapshot:
        return await self._run(quiz_id, lambda engine: self._snapshot_after(engine.resume, engine))

    async def reset(self, quiz_id: str) -> SessionSnapshot:
        await self._cancel_clock(quiz_id)
        return await self._run(quiz_id, lambda engine: self._snapshot_after(engine.reset, engine))

    async def tick(self, quiz_id: str) -> Optional[Transition]:
        return await self._run(quiz_id, lambda engine: engine.tick())

    # --- reads ---

    async def snapshot(self, quiz_id: str) -> SessionSnapshot:
        return await self._run(quiz_id, lambda engine: engine.snapshot())

    async def player_view(self, quiz_id: str, player_id: str) -> PlayerView:
        return await self._run(quiz_id, lambda engine: engine.player_view(player_id))

    async def standings(self, quiz_id: str) -> List[LeaderboardEntry]:
        return await self._run(quiz_id, lambda engine: engine.standings())

    async def list_events(self, quiz_id: str, after: int | None = None, limit: int | None = None):
        return await self.event_store.list(quiz_id, after=after, limit=limit or self.settings.EVENT_PAGE_LIMIT)

    async def latest_event_seq(self, quiz_id: str) -> Optional[int]:
        return await self.event_store.latest_seq(quiz_id)

    async def close(self) -> None:
        for quiz_id in list(self._clock_tasks):
            await self._cancel_clock(quiz_id)

    # --- internals ---

    @staticmethod
    def _snapshot_after(command: Callable[[], Any], engine: SessionEngine) -> SessionSnapshot:
        command()
        return engine.snapshot()

    async def _run(self, quiz_id: str, operation: Callable[[SessionEngine], T]) -> T:
        async with self._lock(quiz_id):
            engine = await self._engine(quiz_id)
            result = operation(engine)
            await self._flush(quiz_id, engine)
            return result

    async def _engine(self, quiz_id: str) -> SessionEngine:
        engine = self.engines.get(quiz_id)
        if engine is not None:
            return engine

        quiz = await self.store.get(quiz_id)
        if quiz is None:
            raise QuizNotFound()

        engine = SessionEngine.from_quiz(
            quiz,
            reveal_delay=self.settings.REVEAL_DELAY_SEC,
            auto_reveal_when_all_answered=self.settings.AUTO_REVEAL_WHEN_ALL_ANSWERED,
            auto_advance=self.settings.AUTO_ADVANCE_AFTER_REVEAL,
            clock=self._clock,
        )
        pending = self._pending.setdefault(quiz_id, [])
        engine.subscribe(lambda event_type, payload: pending.append((event_type, payload)))
        self.engines[quiz_id] = engine

        # a quiz that was running when the service stopped picks up its clock again
        if engine.phase in (Phase.QUESTION_ACTIVE, Phase.QUESTION_REVEAL):
            self._ensure_clock(quiz_id)
        return engine

    async def _flush(self, quiz_id: str, engine: SessionEngine) -> None:
        """Persist the engine and publish its pending events.

        If storage fails the cached engine is dropped, so the next command
        starts again from the last stored document.
        """
        pending = self._pending.get(quiz_id)
        if not pending:
            return
        try:
            await self.store.put(engine.to_quiz())
            for event_type, payload in pending:
                if event_type == RESET_EVENT:
                    await self.event_store.reset(quiz_id)
                else:
                    await self.event_store.append(quiz_id, {"type": event_type, **payload})
        except Exception:
            self._evict(quiz_id)
            raise
        pending.clear()

    def _evict(self, quiz_id: str) -> None:
        logger.warning("dropping cached session for quiz %s after a storage failure", quiz_id)
        self.engines.pop(quiz_id, None)
        self._pending.pop(quiz_id, None)

    def _ensure_clock(self, quiz_id: str) -> None:
        task = self._clock_tasks.get(quiz_id)
        if task is None or task.done():
            self._clock_tasks[quiz_id] = asyncio.create_task(self._run_clock(quiz_id))

    async def _cancel_clock(self, quiz_id: str) -> None:
        task = self._clock_tasks.pop(quiz_id, None)
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run_clock(self, quiz_id: str) -> None:
        interval = self.settings.TICK_INTERVAL_SEC
        logger.debug("clock started for quiz %s", quiz_id)
        try:
            while True:
                await asyncio.sleep(interval)
                async with self._lock(quiz_id):
                    try:
                        engine = await self._engine(quiz_id)
                        if engine.phase in (Phase.WAITING, Phase.FINISHED):
                            break
                        engine.tick()
                        await self._flush(quiz_id, engine)
                    except QuizNotFound:
                        break
                    except Exception:
                        # a failed flush evicted the engine; the next tick reloads it from storage
                        logger.exception("clock tick for quiz %s failed", quiz_id)
        finally:
            if self._clock_tasks.get(quiz_id) is asyncio.current_task():
                del self._clock_tasks[quiz_id]
        logger.debug("clock stopped for quiz %s", quiz_id)
