"""REST boundary: runs API calls off the event loop and reacts to auth and throttling failures."""
import asyncio
from typing import Any, Callable, Optional, TYPE_CHECKING

from .api import APIClient
from .errors import CredentialRejectedError, RateLimitedError
from .logging_config import get_logger
from .notices import NoticeBoard
from .views import ViewState

if TYPE_CHECKING:
    from .session import SessionManager

logger = get_logger("http")


class HTTPBoundary:
    """Every REST call made by the core goes through :meth:`call`.

    - 401/403: the session is force-invalidated and the user is sent to a
      public view; the "session expired" notice is posted only when that
      redirect actually happened.
    - 429: a throttling notice; no retry, session untouched.
    - anything else propagates to the caller unchanged.
    """

    def __init__(self, api: APIClient, views: ViewState, notices: NoticeBoard):
        self.api = api
        self.views = views
        self.notices = notices
        self.session: Optional["SessionManager"] = None

    def attach(self, session: "SessionManager") -> None:
        self.session = session
        self.api.token_provider = session.get_token

    async def call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except CredentialRejectedError as exc:
            self._credential_rejected(exc)
            raise
        except RateLimitedError as exc:
            self._rate_limited(exc)
            raise

    def _credential_rejected(self, exc: CredentialRejectedError) -> None:
        logger.warning("HTTP_CREDENTIAL_REJECTED status=%s view=%s", exc.status, self.views.current)
        if self.session is not None:
            self.session.force_invalidate(f"http_{exc.status}")
        if self.views.redirect_to_public():
            self.notices.error("Session expired or access denied", "Please log in again.")
            exc.surfaced = True
        elif exc.status == 403:
            self.notices.error("Access denied", "You do not have permission to perform this action.")
            exc.surfaced = True

    def _rate_limited(self, exc: RateLimitedError) -> None:
        logger.warning("HTTP_RATE_LIMITED message=%s", exc.message)
        self.notices.error("Rate limit exceeded", exc.detail or "Too many requests. Please try again later.")
        exc.surfaced = True
