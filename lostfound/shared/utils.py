"""Shared utility functions."""
import re
from datetime import datetime, timezone

API_PATH_SUFFIX = re.compile(r"/api(/v\d+)?/?$")


def socket_url_from_api(api_url: str) -> str:
    """Return the realtime base URL for a REST base URL (API path suffix stripped)."""
    return API_PATH_SUFFIX.sub("", api_url.strip()).rstrip("/")


def ensure_aware(value: datetime) -> datetime:
    """Treat naive timestamps from the server as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def from_epoch(seconds: float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)
