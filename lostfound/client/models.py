"""Client-side session models."""
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from ..shared.dto import Profile
from ..shared.utils import from_epoch
from .config import ADMIN_ROLES
from .errors import CredentialError


class SessionState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class Session:
    """Claims decoded from the bearer token, plus refreshed display attributes."""

    user_id: str
    roles: FrozenSet[str]
    expires_at: datetime
    issued_at: Optional[datetime] = None
    name: Optional[str] = None
    email: Optional[str] = None
    username: Optional[str] = None
    created_at: Optional[str] = None
    profile_picture: Optional[str] = None
    profile_picture_url: Optional[str] = None

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "Session":
        user_id = claims.get("userId") or claims.get("sub")
        if not user_id:
            raise CredentialError("Credential has no subject")
        if not isinstance(claims.get("exp"), (int, float)):
            raise CredentialError("Credential has no expiry")
        iat = claims.get("iat")
        return cls(
            user_id=str(user_id),
            roles=frozenset(claims.get("roles") or ()),
            expires_at=from_epoch(claims["exp"]),
            issued_at=from_epoch(iat) if isinstance(iat, (int, float)) else None,
            name=claims.get("name"),
            email=claims.get("email"),
            username=claims.get("username"),
            created_at=claims.get("createdAt"),
            profile_picture=claims.get("profilePicture"),
            profile_picture_url=claims.get("profilePictureUrl"),
        )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    @property
    def is_admin(self) -> bool:
        return bool(self.roles & ADMIN_ROLES)

    def with_profile(self, profile: Profile) -> "Session":
        updates = {
            field: value
            for field, value in (
                ("name", profile.name),
                ("email", profile.email),
                ("profile_picture", profile.profile_picture),
                ("profile_picture_url", profile.profile_picture_url),
            )
            if value is not None
        }
        return replace(self, **updates)
