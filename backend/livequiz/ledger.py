from __future__ import annotations

from typing import Dict, List

from .errors import DuplicateAnswer, InvalidOption, InvalidQuestionIndex, UnknownPlayer
from .models import Answer, Player, Question
from .scoring import score


class AnswerLedger:
    """Per-player record of answers, at most one per question.

    The ledger is the only writer of ``Player.score`` and ``Player.answers``.
    It shares the player mapping with the engine that owns it.
    """

    def __init__(self, players: Dict[str, Player]):
        self._players = players

    def submit(
        self,
        player_id: str,
        question_index: int,
        chosen_option_index: int,
        seconds_remaining: int,
        *,
        current_index: int,
        question: Question,
        time_limit: int,
    ) -> Answer:
        player = self._players.get(player_id)
        if player is None:
            raise UnknownPlayer()

        # duplicate first so a replayed submission is reported as such even after the
        # session moved on
        if player.answer_for(question_index) is not None:
            raise DuplicateAnswer()

        if question_index != current_index:
            raise InvalidQuestionIndex()

        if not 0 <= chosen_option_index < len(question.options):
            raise InvalidOption()

        seconds_remaining = max(0, min(seconds_remaining, time_limit))
        points = score(question, chosen_option_index, seconds_remaining)
        answer = Answer(
            question_index=question_index,
            chosen_option_index=chosen_option_index,
            is_correct=chosen_option_index == question.correct_option_index,
            points_awarded=points,
            seconds_to_answer=time_limit - seconds_remaining,
        )

        player.answers.append(answer)
        player.score += points
        return answer

    def has_answered(self, player_id: str, question_index: int) -> bool:
        player = self._players.get(player_id)
        return player is not None and player.answer_for(question_index) is not None

    def answers_for(self, question_index: int) -> Dict[str, Answer]:
        found: Dict[str, Answer] = {}
        for pid, player in self._players.items():
            answer = player.answer_for(question_index)
            if answer is not None:
                found[pid] = answer
        return found

    def answered_count(self, question_index: int) -> int:
        return len(self.answers_for(question_index))

    def option_counts(self, question_index: int, option_count: int) -> List[int]:
        """How many players chose each option, in authored order."""
        counts = [0] * option_count
        for answer in self.answers_for(question_index).values():
            counts[answer.chosen_option_index] += 1
        return counts
