"""Room error taxonomy shared by the state machine, the stores and the routers."""


class RoomError(Exception):
    code = "ROOM_ERROR"
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_message(self) -> dict:
        return {"type": "error", "message": self.message, "code": self.code}


class RoomNotFound(RoomError):
    code = "NOT_FOUND"
    status_code = 404


class PermissionDenied(RoomError):
    code = "PERMISSION_DENIED"
    status_code = 403


class InvalidState(RoomError):
    code = "WRONG_PHASE"
    status_code = 409


class ValidationFailed(RoomError):
    code = "VALIDATION_FAILED"
    status_code = 400


class EmptyWord(ValidationFailed):
    code = "EMPTY_WORD"


class NotYourTurn(RoomError):
    code = "NOT_YOUR_TURN"
    status_code = 409


class StoreUnavailable(RoomError):
    code = "STORE_UNAVAILABLE"
    status_code = 503
