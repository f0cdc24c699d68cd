from __future__ import annotations

from unittest import TestCase

from .errors import ConflictError, DuplicateAnswer, InvalidOption, InvalidQuestionIndex, NotFoundError, UnknownPlayer
from .ledger import AnswerLedger
from .models import Difficulty, Player, Question


class AnswerLedgerTests(TestCase):
    def setUp(self) -> None:
        self.question = Question(
            text="Which planet is known as the Red Planet?",
            options=["Venus", "Mars", "Jupiter", "Saturn"],
            correct_option_index=1,
            difficulty=Difficulty.EASY,
        )
        self.alice = Player(name="Alice")
        self.bob = Player(name="Bob")
        self.players = {self.alice.id: self.alice, self.bob.id: self.bob}
        self.ledger = AnswerLedger(self.players)

    def _submit(self, player_id: str, option: int, remaining: int = 25, question_index: int = 0, current: int = 0):
        return self.ledger.submit(
            player_id,
            question_index,
            option,
            remaining,
            current_index=current,
            question=self.question,
            time_limit=30,
        )

    def test_correct_answer_updates_score_and_answers(self):
        answer = self._submit(self.alice.id, 1)
        self.assertTrue(answer.is_correct)
        self.assertEqual(answer.points_awarded, 130)
        self.assertEqual(answer.seconds_to_answer, 5)
        self.assertEqual(self.alice.score, 130)
        self.assertEqual(self.alice.answers, [answer])

    def test_wrong_answer_is_recorded_with_zero_points(self):
        answer = self._submit(self.bob.id, 3)
        self.assertFalse(answer.is_correct)
        self.assertEqual(self.bob.score, 0)
        self.assertEqual(len(self.bob.answers), 1)

    def test_second_submission_is_rejected_and_changes_nothing(self):
        self._submit(self.alice.id, 1)
        with self.assertRaises(DuplicateAnswer) as ctx:
            self._submit(self.alice.id, 0, remaining=29)
        self.assertIsInstance(ctx.exception, ConflictError)
        self.assertEqual(self.alice.score, 130)
        self.assertEqual(len(self.alice.answers), 1)

    def test_question_index_must_be_current(self):
        with self.assertRaises(InvalidQuestionIndex) as ctx:
            self._submit(self.alice.id, 1, question_index=1, current=0)
        self.assertIsInstance(ctx.exception, NotFoundError)
        self.assertEqual(self.alice.answers, [])

    def test_unknown_player(self):
        with self.assertRaises(UnknownPlayer):
            self._submit("nobody", 1)

    def test_option_out_of_range(self):
        for option in (-1, 4):
            with self.assertRaises(InvalidOption):
                self._submit(self.alice.id, option)
        self.assertEqual(self.alice.answers, [])

    def test_remaining_time_is_clamped_to_limit(self):
        answer = self._submit(self.alice.id, 1, remaining=45)
        self.assertEqual(answer.seconds_to_answer, 0)
        self.assertEqual(answer.points_awarded, 140)

    def test_aggregates(self):
        self._submit(self.alice.id, 1)
        self._submit(self.bob.id, 3)
        self.assertTrue(self.ledger.has_answered(self.alice.id, 0))
        self.assertFalse(self.ledger.has_answered(self.alice.id, 1))
        self.assertEqual(self.ledger.answered_count(0), 2)
        self.assertEqual(self.ledger.option_counts(0, 4), [0, 1, 0, 1])
        self.assertEqual(set(self.ledger.answers_for(0)), {self.alice.id, self.bob.id})
