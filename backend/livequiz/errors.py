"""Expected, recoverable failures raised by the session engine.

Every operation validates before it mutates, so catching one of these leaves
the session exactly as it was. ``status_code`` is what the HTTP layer answers
with.
"""

from __future__ import annotations


class QuizError(Exception):
    status_code = 400
    code = "quiz_error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.__doc__ or self.code)

    @property
    def message(self) -> str:
        return str(self)


class CapacityError(QuizError):
    status_code = 409
    code = "capacity"


class ConflictError(QuizError):
    status_code = 409
    code = "conflict"


class StateError(QuizError):
    status_code = 409
    code = "invalid_state"


class NotFoundError(QuizError):
    status_code = 404
    code = "not_found"


class ValidationFailed(QuizError):
    status_code = 422
    code = "validation_failed"


class SessionFull(CapacityError):
    """Quiz is full. Maximum players reached."""

    code = "session_full"


class NameTaken(ConflictError):
    """This name is already taken. Please choose a different name."""

    code = "name_taken"


class DuplicateAnswer(ConflictError):
    """An answer for this question has already been recorded."""

    code = "duplicate_answer"


class InvalidPhase(StateError):
    """Operation is not allowed in the current phase."""

    code = "invalid_phase"


class NoPlayers(StateError):
    """Cannot start: at least one player has to join first."""

    code = "no_players"


class AlreadyActive(StateError):
    """Quiz is already running."""

    code = "already_active"


class AlreadyStarted(StateError):
    """Quiz has already started and rejoining is disabled."""

    code = "already_started"


class PlayerNotApproved(StateError):
    """Player is waiting for host approval."""

    code = "player_not_approved"


class UnknownPlayer(NotFoundError):
    """Player not found in this session."""

    code = "unknown_player"


class InvalidQuestionIndex(NotFoundError):
    """Question is not the one currently being asked."""

    code = "invalid_question_index"


class InvalidOption(NotFoundError):
    """Chosen option does not exist for this question."""

    code = "invalid_option"


class QuizNotFound(NotFoundError):
    """Quiz not found or has expired."""

    code = "quiz_not_found"


class InvalidName(ValidationFailed):
    """Player name must not be empty."""

    code = "invalid_name"


class QuizExists(ConflictError):
    """A quiz with this id already exists."""

    code = "quiz_exists"
