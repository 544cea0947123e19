# app/schemas/user.py
from typing import List, Optional
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class UserCreate(BaseModel):
    first_name: str
    last_name: str
    username: str
    email: str
    # 僅用於建立帳號的輸入，不會在輸出 schema 中出現
    password: str


class UserPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    username: str
    email: str


class UserSignedIn(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    username: str
    email: str
    first_name: str
    last_name: str


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    username: str
    email: str
    first_name: str
    last_name: str
    last_login_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


# 部分更新：沒帶的欄位維持原值
class UserUpdate(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


# 修改密碼走專用 API，不放在 UserUpdate
class PasswordChange(BaseModel):
    old_password: str
    new_password: str


class UserSummary(BaseModel):
    username: str
    email: str
    first_name: str
    last_name: str
    roles: List[str]
