from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


# States: waiting -> question_active -> question_reveal -> question_active ... -> finished
class Phase(str, Enum):
    WAITING = "waiting"
    QUESTION_ACTIVE = "question_active"
    QUESTION_REVEAL = "question_reveal"
    FINISHED = "finished"


class Answer(BaseModel):
    question_index: int
    chosen_option_index: int  # index into the authored option order
    is_correct: bool
    points_awarded: int
    seconds_to_answer: int


class Player(BaseModel):
    id: str = Field(default_factory=lambda: uuid4().hex)
    name: str
    score: int = 0
    answers: List[Answer] = Field(default_factory=list)
    connected: bool = True
    approved: bool = True
    joined_at: datetime = Field(default_factory=_utcnow)

    def answer_for(self, question_index: int) -> Optional[Answer]:
        for answer in self.answers:
            if answer.question_index == question_index:
                return answer
        return None


class Question(BaseModel):
    id: str = Field(default_factory=lambda: uuid4().hex)
    text: str
    options: List[str]
    correct_option_index: int
    category: str = "General"
    difficulty: Difficulty = Difficulty.EASY
    # Recorded at authoring time only; the running clock uses the session setting.
    time_limit_seconds: int = Field(default=30, gt=0)
    base_points: int = Field(default=100, ge=0)
    explanation: Optional[str] = None

    @field_validator("text")
    @classmethod
    def _text_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Question text must not be empty")
        return value

    @field_validator("options")
    @classmethod
    def _at_least_two_options(cls, value: List[str]) -> List[str]:
        cleaned = [option.strip() for option in value]
        if len(cleaned) < 2:
            raise ValueError("A question needs at least two options")
        if any(not option for option in cleaned):
            raise ValueError("Option text cannot be empty")
        return cleaned

    @model_validator(mode="after")
    def _correct_index_in_range(self) -> "Question":
        if not 0 <= self.correct_option_index < len(self.options):
            raise ValueError("correct_option_index must point at one of the options")
        return self


class QuizSettings(BaseModel):
    time_per_question_seconds: int = Field(default=30, gt=0)
    show_correct_answer: bool = True
    allow_rejoining: bool = True
    shuffle_questions: bool = False
    shuffle_answers: bool = False
    max_players: int = Field(default=50, gt=0)
    require_approval: bool = False
    show_leaderboard: bool = True


class SessionState(BaseModel):
    phase: Phase = Phase.WAITING
    current_question_index: int = 0
    time_remaining_seconds: int = 0
    is_paused: bool = False
    reveal_remaining_seconds: int = 0
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None


class Quiz(BaseModel):
    id: str = Field(default_factory=lambda: f"quiz_{uuid4().hex[:9]}")
    title: str
    description: str = ""
    host_name: str = ""
    questions: List[Question] = Field(min_length=1)
    settings: QuizSettings = Field(default_factory=QuizSettings)
    players: List[Player] = Field(default_factory=list)
    is_active: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    current_state: SessionState = Field(default_factory=SessionState)
    # Fixed at start when shuffling is enabled; identity orders otherwise.
    question_order: List[int] = Field(default_factory=list)
    option_orders: List[List[int]] = Field(default_factory=list)


class QuestionView(BaseModel):
    """A question as players see it: display option order, answer key only when revealed."""

    id: str
    text: str
    options: List[str]
    category: str
    difficulty: Difficulty
    correct_option_index: Optional[int] = None
    explanation: Optional[str] = None


class LeaderboardEntry(BaseModel):
    rank: int
    player_id: str
    name: str
    score: int
    correct_answers: int
    total_answers: int
    accuracy: float
    average_seconds_to_answer: float


class SessionSnapshot(BaseModel):
    quiz_id: str
    title: str
    phase: Phase
    question_number: int
    total_questions: int
    current_question: Optional[QuestionView] = None
    time_remaining_seconds: int
    reveal_remaining_seconds: int
    is_paused: bool
    answered_count: int
    player_count: int
    option_counts: Optional[List[int]] = None
    leaderboard: Optional[List[LeaderboardEntry]] = None


class PlayerView(BaseModel):
    player_id: str
    name: str
    score: int
    rank: int
    connected: bool
    approved: bool
    has_answered_current: bool
    last_answer: Optional[Answer] = None
