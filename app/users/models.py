from pydantic import BaseModel, Field, EmailStr, ConfigDict
from typing import Optional, List
from datetime import datetime
from enum import Enum

from app.auth.password import StrongPassword
from app.utils.storage import StoredImage

# Champs exposés publiquement (autres utilisateurs, relations)
USER_PUBLIC_PROJECTION = {
    "first_name": 1,
    "last_name": 1,
    "bio": 1,
    "profile_image": 1,
    "created_at": 1,
}

# Jamais renvoyés par l'API
USER_SECRET_PROJECTION = {
    "password": 0,
    "password_reset_token": 0,
    "password_reset_expires_at": 0,
}


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"


# ────────────────────────────────
# IMAGES
# ────────────────────────────────

class UserImage(BaseModel):
    id: str = Field(alias="_id")
    image: StoredImage
    is_approved: bool = False       # seul un admin approuve
    is_profile_image: bool = False
    created_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True)


# ────────────────────────────────
# PROFILS
# ────────────────────────────────

class UserPublic(BaseModel):
    id: str = Field(alias="_id")
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    bio: Optional[str] = ""
    profile_image: Optional[StoredImage] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class UserPrivate(UserPublic):
    email: EmailStr
    status: UserStatus = UserStatus.ACTIVE
    is_active: bool = True
    is_email_verified: bool = False
    is_blocked: bool = False
    blocked_reason: Optional[str] = None
    blocked_at: Optional[datetime] = None
    blocked_by: Optional[str] = None
    images: List[UserImage] = Field(default_factory=list)
    updated_at: Optional[datetime] = None


# ────────────────────────────────
# MISES À JOUR (listes blanches)
# ────────────────────────────────

class UserDetailsUpdate(BaseModel):
    """Champs modifiables par l'utilisateur lui-même"""
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    bio: Optional[str] = Field(None, max_length=500)

    model_config = ConfigDict(extra="forbid")


class AdminUserUpdate(BaseModel):
    """Champs modifiables par un admin"""
    status: Optional[UserStatus] = None
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)

    model_config = ConfigDict(extra="forbid")


class AdminUserCreate(BaseModel):
    email: EmailStr
    password: StrongPassword
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    status: UserStatus = UserStatus.ACTIVE


class AdminSetPasswordRequest(BaseModel):
    password: StrongPassword


class BlockUserRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class ImageApprovalRequest(BaseModel):
    is_approved: bool
