"""Typed failures raised by the remote gateway."""


class RemoteError(Exception):
    """Base exception for remote catalog calls.

    ``transient`` marks failures worth retrying on the next sync cycle
    (timeouts, refused connections, 5xx); everything else is permanent.
    """

    transient = False

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class NetworkError(RemoteError):
    """The request never got a response (timeout, connection refused)."""

    transient = True


class ServerError(RemoteError):
    """The service answered with a 5xx status."""

    transient = True


class NotFoundError(RemoteError):
    """The requested remote resource does not exist (404)."""


class ConflictError(RemoteError):
    """The write collides with an existing remote resource (409)."""


class DuplicateIdentityError(ConflictError):
    """More than one remote merchant claims the same email."""

    def __init__(self, email: str, ids: list):
        super().__init__(
            f"{len(ids)} remote merchants share email {email!r}: {ids}"
        )
        self.email = email
        self.ids = ids


class DecodeError(RemoteError):
    """A response body could not be decoded into the expected shape."""
