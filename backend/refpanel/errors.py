"""
Error vocabulary shared by the HTTP endpoints and the socket acks.

Each error carries the machine readable ``code`` sent to clients and the
HTTP status used when it surfaces through a REST call.
"""


class RoomError(Exception):
    """Base exception for every error reported back to a client."""
    code = 'unknown_error'
    status = 500

    def __init__(self, message=None):
        super().__init__(message or self.code)

    def to_dict(self):
        return {'error': self.code}


class InvalidPin(RoomError):
    code = 'invalid_pin'
    status = 403


class RoomNotFound(RoomError):
    code = 'room_not_found'
    status = 404


class InvalidToken(RoomError):
    code = 'invalid_token'
    status = 403


class NotAuthorised(RoomError):
    code = 'not_authorised'
    status = 403


class UnknownAction(RoomError):
    code = 'unknown_action'
    status = 400


class InvalidPayload(RoomError):
    code = 'invalid_payload'
    status = 400
