from enum import Enum
from pydantic import EmailStr, Field
from beanie import Document, Indexed, PydanticObjectId
from typing import Optional, List, Dict
from datetime import datetime

from schemas.base import ApiModel
from utils.dates import utc_now


class Role(str, Enum):
    STUDENT = "student"
    INSTRUCTOR = "instructor"
    ADMIN = "admin"


class User(Document):
    username: Indexed(str, unique=True)  # type: ignore[valid-type]
    email: Indexed(EmailStr, unique=True)  # type: ignore[valid-type]
    password: str
    role: Role = Role.STUDENT
    enrolled_courses: List[PydanticObjectId] = Field(default_factory=list)
    active_tokens: List[Dict] = Field(default_factory=list)
    password_reset_token_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "users"
        indexes = [
            [("role", 1)],  # Admin lookups for bootstrap
            [("created_at", -1)],  # Descending index for recent users
        ]

    def has_active_token(self, token_id: str) -> bool:
        return any(t["active_token_id"] == token_id for t in self.active_tokens)


class UserCreateRequest(ApiModel):
    username: str
    email: EmailStr
    password: str
    role: Optional[str] = None


class UserProfileResponse(ApiModel):
    user_id: str
    username: str
    email: EmailStr
    role: Role
    enrolled_courses: List[str]
    created_at: datetime
