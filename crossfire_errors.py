class GameError(Exception):
    """A request the room core refused. Nothing was mutated."""

    code = "ERROR"

    def __init__(self, code=None, message=""):
        super().__init__(message or code or self.code)
        if code:
            self.code = code
        self.message = message or self.code

    def to_message(self):
        return {"code": self.code, "message": self.message}


class ValidationError(GameError):
    code = "BAD_REQUEST"


class AuthorizationError(GameError):
    code = "UNAUTHORIZED"


class StateError(GameError):
    code = "BAD_STATE"
