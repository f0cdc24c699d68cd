"""Scoring rules and standings.

Everything here is pure: no session, no clock, no I/O.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List

from .models import Difficulty, LeaderboardEntry, Player, Question


# Only the seconds left above this threshold earn a time bonus.
TIME_BONUS_THRESHOLD_SEC = 10
TIME_BONUS_POINTS_PER_SEC = 2

DIFFICULTY_MULTIPLIERS = {
    Difficulty.EASY: 1.0,
    Difficulty.MEDIUM: 1.2,
    Difficulty.HARD: 1.5,
}


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def score(question: Question, chosen_option_index: int, seconds_remaining: int) -> int:
    """Points for one answer.

    Wrong answers earn nothing. A correct answer earns the question's base
    points plus two points for every second left beyond the first ten,
    scaled by the difficulty multiplier.
    """
    if chosen_option_index != question.correct_option_index:
        return 0

    time_bonus = max(0, seconds_remaining - TIME_BONUS_THRESHOLD_SEC)
    multiplier = DIFFICULTY_MULTIPLIERS[question.difficulty]
    return max(0, _round_half_up((question.base_points + time_bonus * TIME_BONUS_POINTS_PER_SEC) * multiplier))


@dataclass(frozen=True)
class PlayerStats:
    correct_answers: int
    total_answers: int
    accuracy: float
    average_seconds_to_answer: float
    total_seconds: int


def player_stats(player: Player) -> PlayerStats:
    total = len(player.answers)
    correct = sum(1 for a in player.answers if a.is_correct)
    total_seconds = sum(a.seconds_to_answer for a in player.answers)
    return PlayerStats(
        correct_answers=correct,
        total_answers=total,
        accuracy=(correct / total) * 100 if total else 0.0,
        average_seconds_to_answer=total_seconds / total if total else 0.0,
        total_seconds=total_seconds,
    )


def rank_players(players: Iterable[Player]) -> List[LeaderboardEntry]:
    """Standings sorted by score, ties share a rank (1, 1, 3)."""
    ordered = sorted(players, key=lambda p: (-p.score, p.name.lower()))

    entries: List[LeaderboardEntry] = []
    rank = 0
    previous_score = None
    for position, player in enumerate(ordered, start=1):
        if player.score != previous_score:
            rank = position
            previous_score = player.score
        stats = player_stats(player)
        entries.append(
            LeaderboardEntry(
                rank=rank,
                player_id=player.id,
                name=player.name,
                score=player.score,
                correct_answers=stats.correct_answers,
                total_answers=stats.total_answers,
                accuracy=round(stats.accuracy, 1),
                average_seconds_to_answer=round(stats.average_seconds_to_answer, 1),
            )
        )
    return entries
