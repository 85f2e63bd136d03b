"""Navigation state consulted when a session is torn down."""
from .config import HOME_VIEW, LOGIN_VIEW, PUBLIC_VIEWS
from .logging_config import get_logger

logger = get_logger("views")


class ViewState:
    def __init__(self, current: str = HOME_VIEW):
        self.current = current

    @property
    def is_public(self) -> bool:
        return self.current in PUBLIC_VIEWS

    def navigate(self, view: str) -> None:
        self.current = view

    def redirect_to_public(self) -> bool:
        """Move to the login view; False when already on a public view."""
        if self.is_public:
            return False
        logger.info("REDIRECT from=%s to=%s", self.current, LOGIN_VIEW)
        self.current = LOGIN_VIEW
        return True
