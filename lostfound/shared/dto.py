"""Wire-format models for payloads exchanged with the lost-and-found server."""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .utils import ensure_aware


class NotificationType(str, Enum):
    MATCH = "MATCH"
    RESOLVE = "RESOLVE"
    NEW_THREAD = "NEW_THREAD"
    NEW_MESSAGE = "NEW_MESSAGE"
    REPORT_RECEIVED = "REPORT_RECEIVED"
    REPORT_RESOLVED = "REPORT_RESOLVED"


class WireModel(BaseModel):
    """Immutable model accepting the server's camelCase field names."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")


class UserSummary(WireModel):
    id: str
    name: Optional[str] = None
    username: Optional[str] = None
    profile_picture_url: Optional[str] = Field(default=None, alias="profilePictureUrl")


class Participant(WireModel):
    id: str
    user_id: str = Field(alias="userId")
    user: Optional[UserSummary] = None


class PostSummary(WireModel):
    id: str
    title: Optional[str] = None
    type: Optional[str] = None
    image_url: Optional[str] = Field(default=None, alias="imageUrl")


class MessagePreview(WireModel):
    text: str = ""
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    @field_validator("created_at")
    @classmethod
    def _aware(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(value) if value is not None else None


class Message(WireModel):
    id: str
    thread_id: str = Field(alias="threadId")
    sender_id: Optional[str] = Field(default=None, alias="senderId")
    text: str = ""
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    created_at: datetime = Field(alias="createdAt")
    is_system_message: bool = Field(default=False, alias="isSystemMessage")
    sender: Optional[Participant] = None

    @field_validator("created_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    @property
    def sort_key(self) -> Tuple[datetime, str]:
        return (self.created_at, self.id)

    @property
    def sender_user_id(self) -> Optional[str]:
        return self.sender.user_id if self.sender else None


class Thread(WireModel):
    id: str
    post_id: str = Field(alias="postId")
    participants: List[Participant] = Field(default_factory=list)
    post: Optional[PostSummary] = None
    messages: List[MessagePreview] = Field(default_factory=list)
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    @field_validator("created_at")
    @classmethod
    def _aware(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(value) if value is not None else None

    @property
    def participant_ids(self) -> FrozenSet[str]:
        return frozenset(p.user_id for p in self.participants)

    @property
    def last_preview(self) -> Optional[MessagePreview]:
        return self.messages[0] if self.messages else None


class Notification(WireModel):
    id: str
    user_id: Optional[str] = Field(default=None, alias="userId")
    type: str
    content: str = Field(default="", validation_alias=AliasChoices("content", "text"))
    read: bool = Field(default=False, validation_alias=AliasChoices("isRead", "read"))
    created_at: datetime = Field(alias="createdAt")
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("created_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    @property
    def known_type(self) -> Optional[NotificationType]:
        try:
            return NotificationType(self.type)
        except ValueError:
            return None


class Profile(WireModel):
    """Subset of ``GET /user/me`` used to refresh session display data."""

    id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    username: Optional[str] = None
    profile_picture: Optional[str] = Field(default=None, alias="profilePicture")
    profile_picture_url: Optional[str] = Field(default=None, alias="profilePictureUrl")
