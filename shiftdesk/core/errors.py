"""Domain error taxonomy shared by the ledger, state machine and HTTP layer."""


class ShiftError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(ShiftError):
    status_code = 404


class Conflict(ShiftError):
    status_code = 409


class ValidationError(ShiftError, ValueError):
    status_code = 422


class PermissionDenied(ShiftError):
    status_code = 403


class TransientIOError(ShiftError):
    """Store or channel unreachable. Safe to retry; surfaced as "sync failed"."""

    status_code = 503
