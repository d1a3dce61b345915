class GameNightError(Exception):
    """Base error for lobby, voting and directory operations.

    Each subclass carries the HTTP status the API layer answers with. A raise
    site may override it when an endpoint reports the same condition differently.
    """

    status_code = 500
    message = "Unexpected error"

    def __init__(self, message: str | None = None, status_code: int | None = None):
        self.message = message or self.message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ValidationError(GameNightError):
    status_code = 422
    message = "Validation error"


class AuthError(GameNightError):
    status_code = 401
    message = "User not authenticated"


class ForbiddenError(GameNightError):
    status_code = 403
    message = "You are not allowed to do this"


class NotFoundError(GameNightError):
    status_code = 404
    message = "Not found"


class LobbyNotFoundError(NotFoundError):
    message = "Lobby not found"


class NotInLobbyError(NotFoundError):
    message = "Not in any lobby"


class ConflictError(GameNightError):
    status_code = 409
    message = "Conflict"


class AlreadyInLobbyError(ConflictError):
    message = "You are already in a lobby."


class NameTakenError(ConflictError):
    message = "A lobby with this name already exists"


class AlreadyMemberError(ConflictError):
    status_code = 400
    message = "You are already in this lobby"


class LobbyFullError(ConflictError):
    status_code = 400
    message = "Lobby is full"


class AlreadyStartedError(ConflictError):
    status_code = 400
    message = "Voting has already started"


class AlreadyVotedError(ConflictError):
    status_code = 400
    message = "You have already voted on this game"


class UnknownGameError(ConflictError):
    status_code = 400
    message = "Invalid game ID"


class NotAMemberError(GameNightError):
    status_code = 403
    message = "User is not in this lobby"
