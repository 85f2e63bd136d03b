"""HTTP API client for the lost-and-found REST boundary."""
from typing import Any, Callable, Dict, List, Optional

import requests

from .config import API_URL, REQUEST_TIMEOUT
from .errors import APIError, CredentialRejectedError, NetworkError, RateLimitedError


def _data(body: Any) -> Any:
    """Unwrap the server's ``{"data": ...}`` envelope where present."""
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body


def _error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or resp.reason or ""
    if isinstance(body, dict):
        return body.get("message") or body.get("error") or ""
    return ""


class APIClient:
    """Blocking REST client; every request carries the current bearer token."""

    def __init__(
        self,
        base_url: str = API_URL,
        token_provider: Optional[Callable[[], Optional[str]]] = None,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.token_provider = token_provider
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        token = self.token_provider() if self.token_provider else None
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            resp = requests.request(
                method, f"{self.base_url}{path}", headers=self._headers(), timeout=self.timeout, **kwargs
            )
        except requests.RequestException as exc:
            raise NetworkError(f"Could not reach server: {exc}") from exc

        if resp.status_code in (401, 403):
            raise CredentialRejectedError(resp.status_code, _error_message(resp))
        if resp.status_code == 429:
            raise RateLimitedError(resp.status_code, _error_message(resp))
        if not resp.ok:
            raise APIError(resp.status_code, _error_message(resp))
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError:
            return None

    # Auth

    def register(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/auth/register", json=payload) or {}

    def login(self, username: str, password: str) -> str:
        body = self._request("POST", "/auth/login", json={"username": username, "password": password})
        return self._token(body)

    def admin_login(self, username_or_email: str, password: str) -> str:
        body = self._request(
            "POST", "/auth/admin", json={"usernameOrEmail": username_or_email, "password": password}
        )
        return self._token(body)

    @staticmethod
    def _token(body: Any) -> str:
        for candidate in (body, _data(body)):
            if isinstance(candidate, dict) and candidate.get("token"):
                return candidate["token"]
        raise APIError(502, "Server response did not include a token")

    def get_profile(self) -> Dict[str, Any]:
        return _data(self._request("GET", "/user/me")) or {}

    # Notifications

    def get_notifications(self) -> List[Dict[str, Any]]:
        return _data(self._request("GET", "/notifications")) or []

    def mark_notification_read(self, notification_id: str) -> None:
        self._request("PATCH", f"/notifications/{notification_id}/read")

    def mark_all_notifications_read(self) -> None:
        self._request("PATCH", "/notifications/read-all")

    def delete_notification(self, notification_id: str) -> None:
        self._request("DELETE", f"/notifications/{notification_id}")

    # Chat

    def get_or_create_thread(self, post_id: str) -> Dict[str, Any]:
        return _data(self._request("POST", "/chats/thread", json={"postId": post_id}))

    def get_threads(self) -> List[Dict[str, Any]]:
        return _data(self._request("GET", "/chats/threads")) or []

    def get_messages(self, thread_id: str) -> List[Dict[str, Any]]:
        return _data(self._request("GET", f"/chats/{thread_id}/messages")) or []

    def send_message(self, thread_id: str, text: str, image_url: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"text": text}
        if image_url:
            payload["imageUrl"] = image_url
        return _data(self._request("POST", f"/chats/{thread_id}/messages", json=payload)) or {}
