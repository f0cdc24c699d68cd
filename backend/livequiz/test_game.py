from __future__ import annotations

import asyncio
from unittest import IsolatedAsyncioTestCase, mock

from .db import InMemoryDatabase, Settings
from .errors import DuplicateAnswer, NameTaken, QuizExists, QuizNotFound
from .events import EventStore
from .game import GameController
from .models import Phase
from .store import create_store
from .test_engine import make_quiz


class GameControllerTests(IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.settings = Settings(
            TICK_INTERVAL_SEC=0.01,
            REVEAL_DELAY_SEC=1,
            AUTO_REVEAL_WHEN_ALL_ANSWERED=False,
        )
        database = InMemoryDatabase()
        self.store = create_store(database)
        await self.store.open()
        self.events = EventStore(database)
        self.controller = GameController(self.store, self.events, self.settings)
        self.quiz = await self.controller.create_quiz(make_quiz(2, time_per_question_seconds=3))

    async def asyncTearDown(self) -> None:
        await self.controller.close()
        await self.store.close()

    async def _event_types(self) -> list[str]:
        return [e["payload"]["type"] for e in await self.controller.list_events(self.quiz.id)]

    async def test_create_twice_conflicts(self):
        with self.assertRaises(QuizExists):
            await self.controller.create_quiz(make_quiz())

    async def test_unknown_quiz(self):
        with self.assertRaises(QuizNotFound):
            await self.controller.join("missing", "Alice")
        with self.assertRaises(QuizNotFound):
            await self.controller.delete_quiz("missing")

    async def test_join_persists_and_publishes(self):
        player = await self.controller.join(self.quiz.id, "Alice")
        stored = await self.store.get(self.quiz.id)
        self.assertEqual([p.id for p in stored.players], [player.id])
        self.assertEqual(await self._event_types(), ["session_reset", "players_update"])

    async def test_failed_command_changes_nothing(self):
        await self.controller.join(self.quiz.id, "Alice")
        before = await self.controller.list_events(self.quiz.id)
        with self.assertRaises(NameTaken):
            await self.controller.join(self.quiz.id, "alice")
        self.assertEqual(await self.controller.list_events(self.quiz.id), before)

    async def test_concurrent_duplicate_submissions_record_one_answer(self):
        with mock.patch.object(self.controller, "_ensure_clock"):
            alice = await self.controller.join(self.quiz.id, "Alice")
            await self.controller.start(self.quiz.id)
            results = await asyncio.gather(
                *[self.controller.submit_answer(self.quiz.id, alice.id, i % 4) for i in range(5)],
                return_exceptions=True,
            )
        accepted = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, DuplicateAnswer)]
        self.assertEqual(len(accepted), 1)
        self.assertEqual(len(rejected), 4)
        stored = await self.store.get(self.quiz.id)
        self.assertEqual(len(stored.players[0].answers), 1)

    async def test_clock_runs_quiz_to_the_end(self):
        alice = await self.controller.join(self.quiz.id, "Alice")
        await self.controller.start(self.quiz.id)
        await self.controller.submit_answer(self.quiz.id, alice.id, 0)

        for _ in range(200):
            snapshot = await self.controller.snapshot(self.quiz.id)
            if snapshot.phase == Phase.FINISHED:
                break
            await asyncio.sleep(0.01)

        self.assertEqual(snapshot.phase, Phase.FINISHED)
        types = await self._event_types()
        self.assertEqual(types.count("question"), 2)
        self.assertEqual(types.count("reveal"), 2)
        self.assertEqual(types[-1], "game_over")
        stored = await self.store.get(self.quiz.id)
        self.assertEqual(stored.current_state.phase, Phase.FINISHED)
        self.assertFalse(stored.is_active)

    async def test_manual_flow_with_tick(self):
        with mock.patch.object(self.controller, "_ensure_clock"):
            alice = await self.controller.join(self.quiz.id, "Alice")
            snapshot = await self.controller.start(self.quiz.id)
            self.assertEqual(snapshot.phase, Phase.QUESTION_ACTIVE)
            await self.controller.tick(self.quiz.id)
            await self.controller.submit_answer(self.quiz.id, alice.id, 0)
            paused = await self.controller.pause(self.quiz.id)
            self.assertTrue(paused.is_paused)
            resumed = await self.controller.resume(self.quiz.id)
            self.assertFalse(resumed.is_paused)
            revealed = await self.controller.advance(self.quiz.id)
            self.assertEqual(revealed.phase, Phase.QUESTION_REVEAL)

        view = await self.controller.player_view(self.quiz.id, alice.id)
        self.assertGreater(view.score, 0)
        standings = await self.controller.standings(self.quiz.id)
        self.assertEqual(standings[0].player_id, alice.id)

    async def test_reset_stops_clock_and_clears_players(self):
        await self.controller.join(self.quiz.id, "Alice")
        await self.controller.start(self.quiz.id)
        snapshot = await self.controller.reset(self.quiz.id)
        self.assertEqual(snapshot.phase, Phase.WAITING)
        self.assertEqual(snapshot.player_count, 0)
        self.assertNotIn(self.quiz.id, self.controller._clock_tasks)
        events = await self.controller.list_events(self.quiz.id)
        self.assertEqual(events[0]["payload"]["type"], "session_reset")

    async def test_restart_picks_up_stored_session(self):
        with mock.patch.object(self.controller, "_ensure_clock"):
            alice = await self.controller.join(self.quiz.id, "Alice")
            await self.controller.start(self.quiz.id)
            await self.controller.submit_answer(self.quiz.id, alice.id, 0)

        fresh = GameController(self.store, self.events, self.settings)
        with mock.patch.object(fresh, "_ensure_clock") as ensure_clock:
            snapshot = await fresh.snapshot(self.quiz.id)
            with self.assertRaises(DuplicateAnswer):
                await fresh.submit_answer(self.quiz.id, alice.id, 1)
        ensure_clock.assert_called_once_with(self.quiz.id)
        self.assertEqual(snapshot.phase, Phase.QUESTION_ACTIVE)
        self.assertEqual(snapshot.answered_count, 1)

    async def test_delete_quiz(self):
        await self.controller.join(self.quiz.id, "Alice")
        await self.controller.delete_quiz(self.quiz.id)
        self.assertEqual(await self.controller.list_quizzes(), [])
        self.assertEqual(await self.controller.list_events(self.quiz.id), [])
        with self.assertRaises(QuizNotFound):
            await self.controller.snapshot(self.quiz.id)

    async def test_storage_failure_discards_the_command(self):
        with mock.patch.object(self.store, "put", mock.AsyncMock(side_effect=RuntimeError("mongo down"))):
            with self.assertRaises(RuntimeError):
                await self.controller.join(self.quiz.id, "Ann")
        self.assertNotIn(self.quiz.id, self.controller.engines)

        await self.controller.join(self.quiz.id, "Bob")
        snapshot = await self.controller.snapshot(self.quiz.id)
        self.assertEqual(snapshot.player_count, 1)
        stored = await self.store.get(self.quiz.id)
        self.assertEqual([p.name for p in stored.players], ["Bob"])
        self.assertEqual(await self._event_types(), ["session_reset", "players_update"])

    async def test_clock_survives_a_failed_tick(self):
        real_put = self.store.put
        failed = []

        async def flaky_put(quiz):
            if not failed:
                failed.append(quiz.id)
                raise RuntimeError("mongo down")
            await real_put(quiz)

        await self.controller.join(self.quiz.id, "Alice")
        await self.controller.start(self.quiz.id)
        with self.assertLogs("livequiz.game", "ERROR"), mock.patch.object(self.store, "put", flaky_put):
            for _ in range(400):
                snapshot = await self.controller.snapshot(self.quiz.id)
                if snapshot.phase == Phase.FINISHED:
                    break
                await asyncio.sleep(0.01)

        self.assertEqual(failed, [self.quiz.id])
        self.assertEqual(snapshot.phase, Phase.FINISHED)
        stored = await self.store.get(self.quiz.id)
        self.assertEqual(stored.current_state.phase, Phase.FINISHED)

    async def test_delete_releases_the_lock(self):
        await self.controller.join(self.quiz.id, "Alice")
        self.assertIn(self.quiz.id, self.controller.locks)
        await self.controller.delete_quiz(self.quiz.id)
        self.assertNotIn(self.quiz.id, self.controller.locks)
