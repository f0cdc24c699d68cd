"""Session lifecycle.

    waiting --start--> question_active --time up / close--> question_reveal
    question_reveal --advance / reveal delay--> question_active (next index)
                                             or finished (after the last one)
    any --reset--> waiting

Nothing here knows about players or scoring; the engine asks the state
machine whether a command is legal and which transition a tick caused.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from .errors import InvalidPhase
from .models import Phase, SessionState
from .timer import Clock, CountdownTimer

logger = logging.getLogger(__name__)


class Transition(str, Enum):
    QUESTION = "question"
    REVEAL = "reveal"
    FINISHED = "finished"


class SessionStateMachine:
    def __init__(
        self,
        question_count: int,
        time_per_question: int,
        *,
        reveal_delay: int = 3,
        auto_advance: bool = True,
        clock: Optional[Clock] = None,
        state: Optional[SessionState] = None,
    ):
        if question_count < 1:
            raise ValueError("A session needs at least one question")
        self.question_count = question_count
        self.time_per_question = time_per_question
        self.reveal_delay = reveal_delay
        self.auto_advance = auto_advance

        clock_kwargs = {"clock": clock} if clock is not None else {}
        self._question_timer = CountdownTimer(**clock_kwargs)
        self._reveal_timer = CountdownTimer(linger_at_zero=False, **clock_kwargs)

        self.state = state.model_copy(deep=True) if state is not None else SessionState()
        self._resume_timers()

    # --- queries ---

    @property
    def phase(self) -> Phase:
        return self.state.phase

    @property
    def index(self) -> int:
        return self.state.current_question_index

    @property
    def is_last_question(self) -> bool:
        return self.state.current_question_index >= self.question_count - 1

    @property
    def in_question(self) -> bool:
        return self.state.phase in (Phase.QUESTION_ACTIVE, Phase.QUESTION_REVEAL)

    def require(self, *phases: Phase) -> None:
        if self.state.phase not in phases:
            allowed = ", ".join(p.value for p in phases)
            raise InvalidPhase(f"Not allowed while {self.state.phase.value} (needs {allowed})")

    # --- transitions ---

    def start(self) -> None:
        self.require(Phase.WAITING)
        self.state.started_at = datetime.now(timezone.utc)
        self.state.ended_at = None
        self._open_question(0)

    def close_question(self) -> None:
        self.require(Phase.QUESTION_ACTIVE)
        self._question_timer.stop()
        self.state.phase = Phase.QUESTION_REVEAL
        self.state.is_paused = False
        self._reveal_timer.start(self.reveal_delay)
        self._sync()
        logger.info("question %d closed", self.index + 1)

    def next_question(self) -> Transition:
        self.require(Phase.QUESTION_REVEAL)
        self._reveal_timer.stop()
        if self.is_last_question:
            self._finish()
            return Transition.FINISHED
        self._open_question(self.index + 1)
        return Transition.QUESTION

    def pause(self) -> None:
        self.require(Phase.QUESTION_ACTIVE, Phase.QUESTION_REVEAL)
        self._question_timer.pause()
        self._reveal_timer.pause()
        self.state.is_paused = True

    def resume(self) -> None:
        self.require(Phase.QUESTION_ACTIVE, Phase.QUESTION_REVEAL)
        self._question_timer.resume()
        self._reveal_timer.resume()
        self.state.is_paused = False

    def reset(self) -> None:
        self._question_timer.stop()
        self._reveal_timer.stop()
        self.state = SessionState()
        logger.info("session reset to waiting")

    def tick(self) -> Optional[Transition]:
        """Advance the running countdown and apply the transition it causes, if any."""
        if self.state.is_paused:
            return None

        if self.state.phase == Phase.QUESTION_ACTIVE:
            timed_out = self._question_timer.tick()
            self._sync()
            if timed_out:
                self.close_question()
                return Transition.REVEAL
            return None

        if self.state.phase == Phase.QUESTION_REVEAL:
            done = self._reveal_timer.tick()
            self._sync()
            if done and self.auto_advance:
                return self.next_question()
        return None

    # --- internals ---

    def _open_question(self, index: int) -> None:
        assert 0 <= index < self.question_count, f"question index {index} out of range"
        self.state.phase = Phase.QUESTION_ACTIVE
        self.state.current_question_index = index
        self.state.is_paused = False
        self._question_timer.start(self.time_per_question)
        self._sync()
        logger.info("question %d of %d open for %ds", index + 1, self.question_count, self.time_per_question)

    def _finish(self) -> None:
        self._question_timer.stop()
        self.state.phase = Phase.FINISHED
        self.state.is_paused = False
        self.state.time_remaining_seconds = 0
        self.state.reveal_remaining_seconds = 0
        self.state.ended_at = datetime.now(timezone.utc)
        logger.info("session finished after %d questions", self.question_count)

    def _sync(self) -> None:
        self.state.time_remaining_seconds = self._question_timer.remaining
        self.state.reveal_remaining_seconds = self._reveal_timer.remaining
        if self.in_question:
            assert 0 <= self.state.current_question_index < self.question_count
        assert self.state.time_remaining_seconds >= 0

    def _resume_timers(self) -> None:
        # rebuild the clocks of a session loaded from storage
        state = self.state
        if state.phase == Phase.QUESTION_ACTIVE:
            self._question_timer.restore(state.time_remaining_seconds, state.is_paused)
        elif state.phase == Phase.QUESTION_REVEAL:
            self._question_timer.remaining = state.time_remaining_seconds
            self._reveal_timer.restore(state.reveal_remaining_seconds, state.is_paused)
