from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from .models import Answer, Player, Question, Quiz, QuizSettings


class CreateQuizIn(BaseModel):
    id: Optional[str] = None
    title: str = Field(min_length=1)
    description: str = ""
    host_name: str = ""
    questions: List[Question] = Field(min_length=1)
    settings: QuizSettings = Field(default_factory=QuizSettings)

    def to_quiz(self) -> Quiz:
        data = self.model_dump(exclude_none=True)
        return Quiz(**data)


class JoinIn(BaseModel):
    name: str


class PlayerRefIn(BaseModel):
    player_id: str


class AnswerIn(BaseModel):
    player_id: str
    option_index: int
    question_index: Optional[int] = None


class JoinOut(BaseModel):
    quiz_id: str
    player: Player


class AnswerOut(BaseModel):
    accepted: bool = True
    answer: Answer


class QuizSummaryOut(BaseModel):
    id: str
    title: str
    description: str
    host_name: str
    question_count: int
    player_count: int
    is_active: bool
    created_at: datetime

    @classmethod
    def from_quiz(cls, quiz: Quiz) -> "QuizSummaryOut":
        return cls(
            id=quiz.id,
            title=quiz.title,
            description=quiz.description,
            host_name=quiz.host_name,
            question_count=len(quiz.questions),
            player_count=len(quiz.players),
            is_active=quiz.is_active,
            created_at=quiz.created_at,
        )


class EventOut(BaseModel):
    seq: int
    timestamp: Optional[float] = None
    payload: dict[str, Any]


class EventsOut(BaseModel):
    events: List[EventOut]
    latest_seq: Optional[int] = None
