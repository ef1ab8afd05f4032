"""Failures reported back to the player who triggered an action.

None of these are fatal: the socket layer turns them into a
``{"success": False, "message": ...}`` acknowledgement and the room is
left untouched.
"""


class GameError(Exception):
    """Base class for recoverable, caller-visible failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_response(self) -> dict:
        return {'success': False, 'message': self.message}


class ValidationError(GameError):
    """Malformed or out-of-range input (bad answer, bad username)."""


class PreconditionError(GameError):
    """Action is not allowed in the current room/player state."""


class ResourceExhaustedError(GameError):
    """Wager allocation exceeds the player's token balance."""
