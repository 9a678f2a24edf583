from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from app.auth.password import StrongPassword

# Jamais renvoyés par l'API
ADMIN_SECRET_PROJECTION = {"password": 0, "refresh_token": 0, "refresh_token_expires_at": 0}


class AdminPublic(BaseModel):
    id: str = Field(alias="_id")
    first_name: str
    last_name: str
    email: EmailStr
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class AdminCreate(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: StrongPassword


class AdminLoginRequest(BaseModel):
    email: EmailStr
    password: str


class AdminRefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class AdminChangePasswordRequest(BaseModel):
    current_password: str
    new_password: StrongPassword
    new_password_confirm: str

    @model_validator(mode="after")
    def passwords_match(self):
        if self.new_password != self.new_password_confirm:
            raise ValueError("Les mots de passe ne correspondent pas")
        return self


class AdminTokens(BaseModel):
    admin: AdminPublic
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
