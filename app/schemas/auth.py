from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from app.schemas.user import UserPublic, UserSignedIn


class SessionClaims(BaseModel):
    """JWT 內容；只在記憶體中存在，不落地"""
    sub: UUID
    username: str
    token_version: int
    exp: int
    iat: Optional[int] = None


class SignInRequest(BaseModel):
    username_or_email: str
    password: str


class RegisterResponse(BaseModel):
    user: UserPublic
    token: str


class SignInResponse(BaseModel):
    user: UserSignedIn
    token: str


class VerifyTokenRequest(BaseModel):
    token: Optional[str] = None


class TokenRejection(str, Enum):
    EXPIRED = "expired"
    INVALID = "invalid"
    TOKEN_VERSION_MISMATCH = "token_version_mismatch"
    USER_NOT_FOUND = "user_not_found"
    NO_TOKEN = "no_token"


class TokenVerification(BaseModel):
    valid: bool
    reason: Optional[TokenRejection] = None
