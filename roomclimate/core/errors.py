"""
Error taxonomy shared by services and the HTTP layer.

Services raise these; ``roomclimate.api.main`` maps each class to a status code
and a ``{"error": message}`` body.
"""


class RoomClimateError(Exception):
    """Base class for errors that reach the API caller."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RoomClimateError):
    """Client input is missing or malformed."""

    status_code = 400


class ConflictError(RoomClimateError):
    """A unique value (e.g. a room name) is already taken."""

    status_code = 400


class NotFoundError(RoomClimateError):
    """A referenced room or device does not exist."""

    status_code = 404


class StoreError(RoomClimateError):
    """The backing store failed. The message sent to clients stays generic."""

    status_code = 500

    def __init__(self, message: str = "Database error"):
        super().__init__(message)
