"""Error kinds surfaced by the messaging core.

Every error carries the HTTP status the adapter layer answers with, so
routers never have to translate them one by one.
"""


class MessagingError(Exception):

    status_code = 500
    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(MessagingError):
    """Malformed input: empty or oversized content, self-send, bad ids."""

    status_code = 400
    kind = "validation_error"


class NotFoundError(MessagingError):

    status_code = 404
    kind = "not_found"


class AuthorizationError(MessagingError):
    """Caller is not a participant or owner of the resource."""

    status_code = 403
    kind = "authorization_error"


class ConflictError(MessagingError):
    """Concurrent get-or-create could not be resolved by retrying."""

    status_code = 409
    kind = "conflict"


class TransientError(MessagingError):
    """Storage or transport failure; the whole operation is safe to retry."""

    status_code = 503
    kind = "transient_error"
