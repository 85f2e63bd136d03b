"""Client configuration values."""
import os
from pathlib import Path

from dotenv import load_dotenv

from ..shared.utils import socket_url_from_api

load_dotenv()

API_URL = os.getenv("LOSTFOUND_API_URL", "http://localhost:5000").rstrip("/")
SOCKET_URL = os.getenv("LOSTFOUND_SOCKET_URL") or socket_url_from_api(API_URL)
STATE_FILE = Path(os.getenv("LOSTFOUND_STATE_FILE", Path.home() / ".lostfound_client.json"))
LOG_FILE = Path(os.getenv("LOSTFOUND_LOG_FILE", Path.home() / ".lostfound_client.log"))
REQUEST_TIMEOUT = float(os.getenv("LOSTFOUND_REQUEST_TIMEOUT", "10"))

# Realtime reconnection, mirroring the Socket.IO client's default backoff.
RECONNECT_ATTEMPTS = int(os.getenv("LOSTFOUND_RECONNECT_ATTEMPTS", "5"))
RECONNECT_DELAY = 1.0
RECONNECT_DELAY_MAX = 5.0
RECONNECT_RANDOMIZATION = 0.5
HANDSHAKE_TIMEOUT = 5

AUTH_ERROR_PREFIX = "Authentication error"
ADMIN_ROLES = frozenset({"ADMIN", "DEVELOPER"})

LOGIN_VIEW = "login"
HOME_VIEW = "home"
# Where an authenticated user lands; the home view is the logged-out landing page.
POSTS_VIEW = "posts"
PUBLIC_VIEWS = frozenset({LOGIN_VIEW, HOME_VIEW, "register", "forgot-password", "reset-password"})
