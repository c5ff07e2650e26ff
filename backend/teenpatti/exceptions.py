"""Errors raised by the round engine and the room manager.

Validation errors subclass ``ValueError`` so the REST layer can surface their
message verbatim as a 400.  Invariant violations are ``RuntimeError`` and
abort the current round.
"""


class GameError(ValueError):
    """A rejected request. Nothing was mutated."""


class NotYourTurnError(GameError):
    def __init__(self, message: str = "Not your turn") -> None:
        super().__init__(message)


class InvalidBetError(GameError):
    pass


class InvalidActionError(GameError):
    pass


class RoomFullError(GameError):
    def __init__(self, message: str = "Room is full") -> None:
        super().__init__(message)


class AlreadyJoinedError(GameError):
    def __init__(self, message: str = "Player already seated") -> None:
        super().__init__(message)


class PlayerNotFoundError(GameError):
    def __init__(self, message: str = "Player not found") -> None:
        super().__init__(message)


class NoActiveRoundError(GameError):
    def __init__(self, message: str = "No active round") -> None:
        super().__init__(message)


class RoundInProgressError(GameError):
    def __init__(self, message: str = "Round is in progress") -> None:
        super().__init__(message)


class InvariantViolation(RuntimeError):
    """Engine state is inconsistent; the round cannot continue."""


class EmptyDeckError(InvariantViolation):
    def __init__(self, message: str = "Deck is empty") -> None:
        super().__init__(message)


class SeatIndexError(InvariantViolation):
    pass
