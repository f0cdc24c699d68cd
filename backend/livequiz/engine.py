from __future__ import annotations

import logging
import random
from typing import Any, Callable, Dict, List, Optional

from .errors import (
    AlreadyActive,
    AlreadyStarted,
    InvalidName,
    InvalidPhase,
    NameTaken,
    NoPlayers,
    PlayerNotApproved,
    SessionFull,
    UnknownPlayer,
)
from .ledger import AnswerLedger
from .models import (
    Answer,
    LeaderboardEntry,
    Phase,
    Player,
    PlayerView,
    Question,
    QuestionView,
    Quiz,
    SessionSnapshot,
)
from .scoring import rank_players
from .session import SessionStateMachine, Transition
from .timer import Clock
from .utils import name_key, shuffled_order

logger = logging.getLogger(__name__)

Listener = Callable[[str, Dict[str, Any]], None]


class SessionEngine:
    """Single owner of one running quiz: players, answers, phase and clock.

    Every mutation goes through the public methods below. Each one either
    completes or raises a ``QuizError`` without having changed anything.
    The engine is synchronous and not thread safe; callers that accept
    concurrent requests must serialise access per quiz (see ``GameController``).

    Listeners registered with ``subscribe`` are called with
    ``(event_type, payload)`` after every state change. A listener that raises
    is logged and skipped; the command still succeeds.
    """

    def __init__(
        self,
        quiz: Quiz,
        *,
        reveal_delay: int = 3,
        auto_reveal_when_all_answered: bool = True,
        auto_advance: bool = True,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
    ):
        self.quiz_id = quiz.id
        self._quiz = quiz.model_copy(deep=True)
        self.settings = self._quiz.settings
        self.questions: List[Question] = list(self._quiz.questions)
        self.auto_reveal_when_all_answered = auto_reveal_when_all_answered
        self._rng = rng or random.Random()
        self._listeners: List[Listener] = []

        # dict keeps join order
        self._players: Dict[str, Player] = {p.id: p.model_copy(deep=True) for p in quiz.players}
        self._ledger = AnswerLedger(self._players)
        self._machine = SessionStateMachine(
            len(self.questions),
            self.settings.time_per_question_seconds,
            reveal_delay=reveal_delay,
            auto_advance=auto_advance,
            clock=clock,
            state=quiz.current_state,
        )

        self._question_order: List[int] = list(quiz.question_order)
        self._option_orders: List[List[int]] = [list(o) for o in quiz.option_orders]
        if not self._orders_valid():
            self._set_identity_orders()

    @classmethod
    def from_quiz(cls, quiz: Quiz, **kwargs) -> "SessionEngine":
        return cls(quiz, **kwargs)

    # --- listeners ---

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        # listeners run after the change is made and cannot undo it
        for listener in list(self._listeners):
            try:
                listener(event_type, payload)
            except Exception:
                logger.exception("listener failed on %s event for quiz %s", event_type, self.quiz_id)

    # --- queries ---

    @property
    def phase(self) -> Phase:
        return self._machine.phase

    @property
    def current_index(self) -> int:
        return self._machine.index

    @property
    def players(self) -> List[Player]:
        return [p.model_copy(deep=True) for p in self._players.values()]

    @property
    def is_full(self) -> bool:
        return len(self._players) >= self.settings.max_players

    def get_player(self, player_id: str) -> Player:
        player = self._players.get(player_id)
        if player is None:
            raise UnknownPlayer()
        return player.model_copy(deep=True)

    def current_question(self) -> Optional[Question]:
        if not self._machine.in_question:
            return None
        return self.questions[self._question_order[self.current_index]]

    # --- player commands ---

    def join(self, name: str) -> Player:
        name = (name or "").strip()
        if not name:
            raise InvalidName()

        phase = self.phase
        if phase == Phase.FINISHED:
            raise AlreadyStarted("Quiz has already finished")
        if phase != Phase.WAITING and not self.settings.allow_rejoining:
            raise AlreadyStarted()

        existing = self._find_by_name(name)
        if existing is not None:
            if phase != Phase.WAITING and not existing.connected:
                existing.connected = True
                logger.info("player %s rejoined quiz %s", existing.name, self.quiz_id)
                self._publish_players()
                return existing.model_copy(deep=True)
            raise NameTaken()

        if self.is_full:
            raise SessionFull()

        player = Player(name=name, approved=not self.settings.require_approval)
        self._players[player.id] = player
        logger.info("player %s joined quiz %s (%d/%d)", name, self.quiz_id, len(self._players), self.settings.max_players)
        self._publish_players()
        return player.model_copy(deep=True)

    def leave(self, player_id: str) -> None:
        player = self._players.get(player_id)
        if player is None:
            raise UnknownPlayer()
        if self.phase == Phase.FINISHED:
            raise InvalidPhase("Quiz has already finished")

        if self.phase == Phase.WAITING:
            del self._players[player_id]
        else:
            player.connected = False
        self._publish_players()
        self._maybe_fast_forward()

    def submit_answer(self, player_id: str, option_index: int, question_index: Optional[int] = None) -> Answer:
        """Record a player's answer to the current question.

        ``option_index`` is in the order the player was shown. When
        ``question_index`` is given it must name the question being asked.
        """
        self._machine.require(Phase.QUESTION_ACTIVE)

        player = self._players.get(player_id)
        if player is None:
            raise UnknownPlayer()
        if not player.approved:
            raise PlayerNotApproved()

        index = self.current_index
        authored_idx = self._question_order[index]
        question = self.questions[authored_idx]
        order = self._option_orders[authored_idx]
        chosen = order[option_index] if 0 <= option_index < len(order) else option_index

        answer = self._ledger.submit(
            player_id,
            index if question_index is None else question_index,
            chosen,
            self._machine.state.time_remaining_seconds,
            current_index=index,
            question=question,
            time_limit=self.settings.time_per_question_seconds,
        )

        self._emit(
            "answer_recorded",
            {
                "player_id": player_id,
                "question_index": index,
                "answered_count": self._ledger.answered_count(index),
            },
        )
        self._maybe_fast_forward()
        return answer.model_copy()

    # --- host commands ---

    def approve(self, player_id: str) -> Player:
        player = self._players.get(player_id)
        if player is None:
            raise UnknownPlayer()
        if self.phase == Phase.FINISHED:
            raise InvalidPhase("Quiz has already finished")
        if not player.approved:
            player.approved = True
            self._publish_players()
        return player.model_copy(deep=True)

    def start(self) -> None:
        if self.phase != Phase.WAITING:
            raise AlreadyActive()
        if not any(p.approved for p in self._players.values()):
            raise NoPlayers()

        count = len(self.questions)
        self._question_order = (
            shuffled_order(count, self._rng) if self.settings.shuffle_questions else list(range(count))
        )
        self._option_orders = [
            shuffled_order(len(q.options), self._rng) if self.settings.shuffle_answers else list(range(len(q.options)))
            for q in self.questions
        ]

        self._machine.start()
        self._quiz.is_active = True
        logger.info("quiz %s started with %d players", self.quiz_id, len(self._players))
        self._publish_question()

    def advance(self) -> Transition:
        """Close the open question, or move past the revealed one."""
        if self.phase == Phase.QUESTION_ACTIVE:
            self._machine.close_question()
            self._publish_reveal()
            return Transition.REVEAL
        if self.phase == Phase.QUESTION_REVEAL:
            transition = self._machine.next_question()
            self._after_transition(transition)
            return transition
        raise InvalidPhase(f"Cannot advance while {self.phase.value}")

    def pause(self) -> None:
        self._machine.pause()
        self._emit("paused", {"time_remaining": self._machine.state.time_remaining_seconds})

    def resume(self) -> None:
        self._machine.resume()
        self._emit("resumed", {"time_remaining": self._machine.state.time_remaining_seconds})

    def tick(self) -> Optional[Transition]:
        transition = self._machine.tick()
        if transition is not None:
            self._after_transition(transition)
        return transition

    def reset(self) -> None:
        self._players.clear()
        self._machine.reset()
        self._quiz.is_active = False
        self._set_identity_orders()
        logger.info("quiz %s reset", self.quiz_id)
        self._emit("session_reset", {})
        self._publish_players()

    # --- projections ---

    def standings(self) -> List[LeaderboardEntry]:
        return rank_players(self._players.values())

    def snapshot(self) -> SessionSnapshot:
        state = self._machine.state
        phase = state.phase
        in_question = self._machine.in_question
        index = state.current_question_index

        if phase == Phase.FINISHED:
            question_number = len(self.questions)
        elif in_question:
            question_number = index + 1
        else:
            question_number = 0

        option_counts = None
        if phase == Phase.QUESTION_REVEAL:
            option_counts = self._display_option_counts(index)

        leaderboard = None
        if self.settings.show_leaderboard or phase == Phase.FINISHED:
            leaderboard = self.standings()

        return SessionSnapshot(
            quiz_id=self.quiz_id,
            title=self._quiz.title,
            phase=phase,
            question_number=question_number,
            total_questions=len(self.questions),
            current_question=self._question_view() if in_question else None,
            time_remaining_seconds=state.time_remaining_seconds,
            reveal_remaining_seconds=state.reveal_remaining_seconds,
            is_paused=state.is_paused,
            answered_count=self._ledger.answered_count(index) if in_question else 0,
            player_count=len(self._players),
            option_counts=option_counts,
            leaderboard=leaderboard,
        )

    def player_view(self, player_id: str) -> PlayerView:
        player = self._players.get(player_id)
        if player is None:
            raise UnknownPlayer()
        rank = next(e.rank for e in self.standings() if e.player_id == player_id)
        return PlayerView(
            player_id=player.id,
            name=player.name,
            score=player.score,
            rank=rank,
            connected=player.connected,
            approved=player.approved,
            has_answered_current=self._machine.in_question and self._ledger.has_answered(player.id, self.current_index),
            last_answer=player.answers[-1].model_copy() if player.answers else None,
        )

    def to_quiz(self) -> Quiz:
        return self._quiz.model_copy(
            update={
                "players": self.players,
                "current_state": self._machine.state.model_copy(),
                "question_order": list(self._question_order),
                "option_orders": [list(o) for o in self._option_orders],
            },
            deep=True,
        )

    # --- internals ---

    def _find_by_name(self, name: str) -> Optional[Player]:
        key = name_key(name)
        for player in self._players.values():
            if name_key(player.name) == key:
                return player
        return None

    def _maybe_fast_forward(self) -> None:
        if not self.auto_reveal_when_all_answered or self.phase != Phase.QUESTION_ACTIVE:
            return
        expected = [p for p in self._players.values() if p.connected and p.approved]
        if expected and all(self._ledger.has_answered(p.id, self.current_index) for p in expected):
            logger.info("all players answered question %d, revealing early", self.current_index + 1)
            self._machine.close_question()
            self._publish_reveal()

    def _after_transition(self, transition: Transition) -> None:
        if transition == Transition.REVEAL:
            self._publish_reveal()
        elif transition == Transition.QUESTION:
            self._publish_question()
        elif transition == Transition.FINISHED:
            self._quiz.is_active = False
            self._emit("game_over", {"leaderboard": [e.model_dump(mode="json") for e in self.standings()]})

    def _question_view(self) -> QuestionView:
        index = self.current_index
        authored_idx = self._question_order[index]
        question = self.questions[authored_idx]
        order = self._option_orders[authored_idx]
        revealed = self.phase == Phase.QUESTION_REVEAL and self.settings.show_correct_answer
        return QuestionView(
            id=question.id,
            text=question.text,
            options=[question.options[i] for i in order],
            category=question.category,
            difficulty=question.difficulty,
            correct_option_index=order.index(question.correct_option_index) if revealed else None,
            explanation=question.explanation if revealed else None,
        )

    def _display_option_counts(self, index: int) -> List[int]:
        authored_idx = self._question_order[index]
        question = self.questions[authored_idx]
        counts = self._ledger.option_counts(index, len(question.options))
        return [counts[i] for i in self._option_orders[authored_idx]]

    def _publish_players(self) -> None:
        self._emit(
            "players_update",
            {"players": [p.model_dump(mode="json", exclude={"answers"}) for p in self._players.values()]},
        )

    def _publish_question(self) -> None:
        self._emit(
            "question",
            {
                "question_index": self.current_index,
                "question_number": self.current_index + 1,
                "total_questions": len(self.questions),
                "question": self._question_view().model_dump(mode="json"),
                "time_limit": self.settings.time_per_question_seconds,
            },
        )

    def _publish_reveal(self) -> None:
        index = self.current_index
        view = self._question_view()
        awards = {pid: a.points_awarded for pid, a in self._ledger.answers_for(index).items()}
        self._emit(
            "reveal",
            {
                "question_index": index,
                "correct_option_index": view.correct_option_index,
                "explanation": view.explanation,
                "option_counts": self._display_option_counts(index),
                "answered_count": len(awards),
                "awards": awards,
            },
        )

    def _orders_valid(self) -> bool:
        if sorted(self._question_order) != list(range(len(self.questions))):
            return False
        if len(self._option_orders) != len(self.questions):
            return False
        return all(sorted(o) == list(range(len(q.options))) for o, q in zip(self._option_orders, self.questions))

    def _set_identity_orders(self) -> None:
        self._question_order = list(range(len(self.questions)))
        self._option_orders = [list(range(len(q.options))) for q in self.questions]
