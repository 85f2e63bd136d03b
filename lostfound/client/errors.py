"""Exception types raised by the client core."""
from typing import Optional


class LostFoundError(Exception):
    """Base class for client errors.

    ``surfaced`` is set once a user-visible notice has been posted for the
    error, so callers further up do not post a second one.
    """

    surfaced = False

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else ""


class APIError(LostFoundError):
    """Non-2xx response from the REST boundary."""

    def __init__(self, status: int, message: str = ""):
        super().__init__(message or f"Request failed with status {status}")
        self.status = status
        self.detail = message


class CredentialRejectedError(APIError):
    """401/403: the server no longer accepts the credential."""


class RateLimitedError(APIError):
    """429: the server is throttling this client."""


class NetworkError(LostFoundError):
    """The REST boundary could not be reached."""


class AuthenticationError(LostFoundError):
    """Login or registration was refused."""


class AuthorizationError(LostFoundError):
    """The session is valid but lacks the role required for the action."""


class CredentialError(LostFoundError):
    """A credential could not be decoded or carries no usable expiry."""


class NotTrackedError(LostFoundError, LookupError):
    """An operation referenced an entity the cache does not hold."""

    def __init__(self, kind: str, entity_id: Optional[str]):
        super().__init__(f"Unknown {kind}: {entity_id}")
        self.kind = kind
        self.entity_id = entity_id
