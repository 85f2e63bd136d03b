"""Local client storage for the session credential."""
import json
from pathlib import Path
from typing import Any, Dict, Optional

from .config import STATE_FILE


def load_state(path: Path) -> Dict[str, Any]:
    if path.exists():
        with path.open("r", encoding="utf-8") as f:
            try:
                return json.load(f)
            except json.JSONDecodeError:
                return {}
    return {}


def save_state(path: Path, data: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


class CredentialStore:
    """The one persisted copy of the bearer token, plus the server URL."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path or STATE_FILE)

    def get_token(self) -> Optional[str]:
        return load_state(self.path).get("token")

    def store_token(self, token: str) -> None:
        state = load_state(self.path)
        state["token"] = token
        save_state(self.path, state)

    def clear_token(self) -> None:
        state = load_state(self.path)
        if state.pop("token", None) is not None:
            save_state(self.path, state)

    def get_server_url(self) -> Optional[str]:
        return load_state(self.path).get("server_url")

    def store_server_url(self, url: str) -> None:
        state = load_state(self.path)
        state["server_url"] = url.rstrip("/")
        save_state(self.path, state)
