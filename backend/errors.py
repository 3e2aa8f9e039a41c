"""
Error taxonomy for the dispatch backend.

Every error carries the HTTP status and the user-facing message the Flask
error handler returns, so routes can simply raise.
"""


class DispatchError(Exception):
    status_code = 500
    code = "dispatch_error"
    message = "Something went wrong"

    def __init__(self, message: str = None, **details):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = details

    def to_dict(self) -> dict:
        body = {"success": False, "error": self.message, "code": self.code}
        body.update(self.details)
        return body


# --- Confirmation tokens ----------------------------------------------------

class TokenNotFound(DispatchError):
    status_code = 404
    code = "token_not_found"
    message = "Invalid or expired token"


class TokenExpired(TokenNotFound):
    """Past its TTL. Callers treat it as not found but show a different message."""
    code = "token_expired"
    message = "This emergency link has expired. Please call again."


class TokenAlreadyUsed(DispatchError):
    status_code = 400
    code = "token_used"
    message = "This emergency link has already been used"


# --- Dispatch ---------------------------------------------------------------

class AssignmentConflict(DispatchError):
    """Lost a race for an ambulance or a request slot; a concurrent winner succeeded."""
    status_code = 409
    code = "assignment_conflict"
    message = "Request or ambulance was claimed by someone else"


class InvalidTransition(DispatchError):
    status_code = 409
    code = "invalid_transition"
    message = "Status change not allowed"


class NotFound(DispatchError):
    status_code = 404
    code = "not_found"
    message = "Not found"


class LocationUnavailable(DispatchError):
    status_code = 400
    code = "location_unavailable"
    message = "A valid location (lat, lng) is required"


class ValidationError(DispatchError):
    status_code = 400
    code = "validation_error"
    message = "Invalid request"


class PersistenceUnavailable(DispatchError):
    status_code = 503
    code = "persistence_unavailable"
    message = "Dispatch database is unavailable"
