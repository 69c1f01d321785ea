"""Error taxonomy for game actions.

Every rejected client action is answered with ``{'success': False, 'error': ...}``;
these exceptions carry the message and a short machine-readable code.
"""


class GameError(Exception):
    """Base class for all errors surfaced to the requesting connection."""

    code = 'error'

    def __init__(self, message: str = 'Request failed'):
        super().__init__(message)
        self.message = message

    def to_ack(self) -> dict:
        return {'success': False, 'error': self.message, 'code': self.code}


class NotFoundError(GameError):
    code = 'not_found'


class StateConflictError(GameError):
    """Action is not allowed in the session's current phase or turn."""

    code = 'state_conflict'


class CapacityError(StateConflictError):
    code = 'full'


class MoveValidationError(GameError):
    code = 'invalid'


class PersistenceError(GameError):
    """A critical-path storage write failed and was rolled back."""

    code = 'persistence'
