"""Session credential lifecycle: login, restore, logout and forced invalidation."""
import asyncio
import time
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, List, Optional

import jwt

from ..shared.dto import Profile
from ..shared.utils import from_epoch
from .boundary import HTTPBoundary
from .errors import (
    APIError,
    AuthenticationError,
    AuthorizationError,
    CredentialError,
    LostFoundError,
    NetworkError,
)
from .logging_config import get_logger
from .models import Session, SessionState
from .notices import NoticeBoard
from .storage import CredentialStore

logger = get_logger("session")

SessionListener = Callable[[SessionState, SessionState], None]


def decode_credential(token: str) -> Session:
    """Decode the token's claims without verifying its signature.

    The server is the only party able to verify the credential; the client
    reads the claims for display and for local expiry checks.
    """
    try:
        claims = jwt.decode(token, options={"verify_signature": False, "verify_exp": False})
    except jwt.PyJWTError as exc:
        raise CredentialError(f"Credential could not be decoded: {exc}") from exc
    return Session.from_claims(claims)


class SessionManager:
    """Single source of truth for whether the user is authenticated."""

    def __init__(
        self,
        http: HTTPBoundary,
        store: CredentialStore,
        notices: Optional[NoticeBoard] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.http = http
        self.store = store
        self.notices = notices or http.notices
        self._clock = clock
        self.state = SessionState.UNAUTHENTICATED
        self.session: Optional[Session] = None
        self.error: Optional[str] = None
        self.refresh_task: Optional[asyncio.Task] = None
        self._token: Optional[str] = None
        # Bumped by every teardown; a login that started earlier is stale.
        self._generation = 0
        self._listeners: List[SessionListener] = []
        http.attach(self)

    # State

    def get_token(self) -> Optional[str]:
        return self._token

    @property
    def now(self) -> datetime:
        return from_epoch(self._clock())

    @property
    def is_authenticated(self) -> bool:
        return (
            self.state is SessionState.AUTHENTICATED
            and self.session is not None
            and not self.session.is_expired(self.now)
        )

    @property
    def is_admin(self) -> bool:
        return self.is_authenticated and self.session.is_admin

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _set_state(self, new: SessionState) -> None:
        old = self.state
        if old is new:
            return
        self.state = new
        logger.info("SESSION_STATE %s -> %s", old.value, new.value)
        for listener in list(self._listeners):
            listener(old, new)

    # Login flows

    async def login(self, username_or_email: str, password: str) -> Optional[Session]:
        return await self._authenticate(self.http.api.login, username_or_email, password, require_admin=False)

    async def admin_login(self, username_or_email: str, password: str) -> Optional[Session]:
        return await self._authenticate(
            self.http.api.admin_login, username_or_email, password, require_admin=True
        )

    async def _authenticate(
        self, request: Callable[[str, str], str], identifier: str, password: str, require_admin: bool
    ) -> Optional[Session]:
        if self._token is not None or self.state is not SessionState.UNAUTHENTICATED:
            # A new session replaces the old one, or a login still in flight.
            self._teardown("replaced")

        self.error = None
        self._set_state(SessionState.AUTHENTICATING)
        generation = self._generation
        try:
            token = await self.http.call(request, identifier, password)
            if generation != self._generation:
                logger.info("LOGIN_DISCARDED reason=torn_down")
                return None
            self._adopt(token)
        except NetworkError as exc:
            self._fail(exc.message, generation)
            raise
        except CredentialError as exc:
            self._fail("Received an invalid credential", generation)
            raise AuthenticationError(self.error) from exc
        except APIError as exc:
            self._fail(exc.detail or "Login failed. Please check your credentials.", generation)
            error = AuthenticationError(self.error)
            error.surfaced = exc.surfaced
            raise error from exc

        if require_admin and not self.session.is_admin:
            logger.warning("ADMIN_LOGIN_DENIED user_id=%s", self.session.user_id)
            self._fail("Unauthorized: Admin access required")
            raise AuthorizationError(self.error)

        self._set_state(SessionState.AUTHENTICATED)
        logger.info("LOGIN_SUCCESS user_id=%s admin=%s", self.session.user_id, require_admin)
        await self._refresh_quietly()
        return self.session

    def _adopt(self, token: str) -> Session:
        self._token = token
        self.store.store_token(token)
        session = decode_credential(token)
        if session.is_expired(self.now):
            raise CredentialError("Credential is already expired")
        self.session = session
        return session

    def _fail(self, message: str, generation: Optional[int] = None) -> None:
        logger.info("LOGIN_FAIL reason=%s", message)
        self.error = message
        if generation is not None and generation != self._generation:
            return
        self._purge()
        self._set_state(SessionState.UNAUTHENTICATED)

    async def register(self, name: str, email: str, password: str) -> str:
        """Create an account. Does not log in."""
        try:
            body = await self.http.call(self.http.api.register, {"name": name, "email": email, "password": password})
        except APIError as exc:
            self.error = exc.detail or "Registration failed. Please try again."
            logger.info("REGISTER_FAIL email=%s status=%s", email, exc.status)
            raise AuthenticationError(self.error) from exc
        logger.info("REGISTER_SUCCESS email=%s", email)
        return (body or {}).get("message", "Registration successful")

    # Startup

    async def restore_session(self) -> bool:
        """Adopt a stored credential if it is still valid.

        Needs no network access; the profile refresh is started in the
        background and not awaited.
        """
        token = self.store.get_token()
        if not token:
            return False
        try:
            session = decode_credential(token)
        except CredentialError as exc:
            logger.warning("RESTORE_FAIL reason=undecodable error=%s", exc)
            self.store.clear_token()
            return False
        if session.is_expired(self.now):
            logger.info("RESTORE_FAIL reason=expired user_id=%s", session.user_id)
            self.store.clear_token()
            return False

        self._token = token
        self.session = session
        self._set_state(SessionState.AUTHENTICATED)
        logger.info("RESTORE_SUCCESS user_id=%s", session.user_id)
        self.refresh_task = asyncio.get_running_loop().create_task(self._refresh_quietly())
        return True

    # Profile

    async def refresh_profile(self) -> Optional[Session]:
        token = self._token
        if token is None:
            return None
        data = await self.http.call(self.http.api.get_profile)
        if self._token != token or self.session is None:
            logger.info("PROFILE_REFRESH_DISCARDED reason=session_changed")
            return None
        self.session = self.session.with_profile(Profile.model_validate(data or {}))
        return self.session

    async def _refresh_quietly(self) -> None:
        try:
            await self.refresh_profile()
        except LostFoundError as exc:
            # Claims from the credential stay valid; only display data is stale.
            logger.warning("PROFILE_REFRESH_FAIL error=%s", exc)

    def update_user(self, **attrs: Any) -> None:
        if self.session is None:
            return
        self.session = replace(self.session, **attrs)

    # Teardown

    def check_expiry(self) -> bool:
        """Invalidate the session if its credential has expired. True if it did."""
        if self.session is not None and self.session.is_expired(self.now):
            return self.force_invalidate("expired")
        return False

    def logout(self) -> bool:
        """Purge the credential. Idempotent; only the first call posts a notice."""
        had_session = self._teardown("logout")
        if had_session:
            self.notices.info("Logged out", "You have been successfully logged out.")
        return had_session

    def force_invalidate(self, reason: str) -> bool:
        """Tear down a credential the server rejected. No-op when none is held."""
        if self._teardown(reason):
            logger.warning("SESSION_INVALIDATED reason=%s", reason)
            return True
        return False

    def _teardown(self, reason: str) -> bool:
        had_session = self._token is not None
        if had_session:
            logger.info("SESSION_TEARDOWN reason=%s user_id=%s", reason, self.session.user_id if self.session else None)
        self._generation += 1
        self._purge()
        self._set_state(SessionState.UNAUTHENTICATED)
        return had_session

    def _purge(self) -> None:
        self._token = None
        self.session = None
        self.store.clear_token()
