# app/repositories/users.py
"""
User 的資料存取層（async SQLAlchemy）。

每個公開方法都是一個完整單位：單一語句、回傳前就 commit。
username/email 的 unique constraint 才是衝突的最終判斷；
service 層的 exists 查詢只是先給清楚的訊息，並行註冊時仍可能兩邊都通過。

已軟刪除的資料（deleted_at 不為 NULL）目前不做過濾。
"""
from __future__ import annotations

import functools
import uuid
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Mapping, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError, NotFoundError, StoreUnavailableError
from app.models.roles import Role, users_roles
from app.models.users import User
from app.schemas.user import UserSummary

PROFILE_FIELDS = ("username", "email", "first_name", "last_name")
DEFAULT_ROLE = "default"

EMAIL_IN_USE = "Email already in use"
USERNAME_IN_USE = "Username already in use"

# 連不上 DB / 連線池耗盡
_STORE_DOWN = (OperationalError, InterfaceError, PoolTimeoutError)


def _store_call(fn):
    """把連線層級的錯誤轉成 StoreUnavailableError（不重試）。"""
    @functools.wraps(fn)
    async def wrapper(self, *args, **kwargs):
        try:
            return await fn(self, *args, **kwargs)
        except _STORE_DOWN as exc:
            raise StoreUnavailableError() from exc
    return wrapper


class UserRepository:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # === 查詢 ===
    @_store_call
    async def username_exists(self, username: str, exclude_id: Optional[uuid.UUID] = None) -> bool:
        """完全比對（區分大小寫）；exclude_id 用來排除自己那一筆。"""
        return await self._exists(User.username, username, exclude_id)

    @_store_call
    async def email_exists(self, email: str, exclude_id: Optional[uuid.UUID] = None) -> bool:
        return await self._exists(User.email, email, exclude_id)

    @_store_call
    async def cross_identifier_conflict(
        self,
        *,
        username: Optional[str] = None,
        email: Optional[str] = None,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> Optional[str]:
        """
        帳號或 email 都能拿來登入，所以兩欄之間也不能撞名：
        新 email 不可等於別人的 username，新 username 不可等於別人的 email。
        有衝突時回傳對應訊息，否則 None。
        """
        if email is not None and await self._exists(User.username, email, exclude_id):
            return EMAIL_IN_USE
        if username is not None and await self._exists(User.email, username, exclude_id):
            return USERNAME_IN_USE
        return None

    @_store_call
    async def find_by_id(self, user_id: uuid.UUID) -> User:
        q = select(User).where(User.id == user_id).execution_options(populate_existing=True)
        user = (await self.db.execute(q)).scalar_one_or_none()
        if user is None:
            raise NotFoundError("User not found")
        return user

    @_store_call
    async def find_by_username_or_email(self, value: str) -> User:
        q = (
            select(User)
            .where(or_(User.username == value, User.email == value))
            .order_by(User.created_at)
            .limit(1)
        )
        user = (await self.db.execute(q)).scalars().first()
        if user is None:
            raise NotFoundError("User not found")
        return user

    @_store_call
    async def list_with_roles(self) -> List[UserSummary]:
        """
        全部使用者與角色名稱，固定兩次查詢（先 users，再一次批次 join 角色）。
        沒有任何 users_roles 的人回報 ["default"]。
        """
        user_rows = (
            await self.db.execute(
                select(User.id, User.username, User.email, User.first_name, User.last_name)
                .order_by(User.created_at, User.username)
            )
        ).all()

        roles_map: Dict[uuid.UUID, List[str]] = defaultdict(list)
        user_ids = [row.id for row in user_rows]
        if user_ids:
            role_rows = await self.db.execute(
                select(users_roles.c.user_id, Role.name)
                .select_from(users_roles)
                .join(Role, Role.id == users_roles.c.role_id)
                .where(users_roles.c.user_id.in_(user_ids))
                .order_by(Role.name)
            )
            for uid, role_name in role_rows:
                roles_map[uid].append(role_name)

        return [
            UserSummary(
                username=row.username,
                email=row.email,
                first_name=row.first_name,
                last_name=row.last_name,
                roles=roles_map.get(row.id) or [DEFAULT_ROLE],
            )
            for row in user_rows
        ]

    # === 寫入 ===
    @_store_call
    async def insert(self, new_user: User) -> User:
        """unique 衝突轉成 ConflictError，訊息與 service 的 pre-check 相同。"""
        email, username = new_user.email, new_user.username
        self.db.add(new_user)
        try:
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            raise await self._conflict(email=email, username=username) from exc
        await self.db.refresh(new_user)
        return new_user

    @_store_call
    async def update_profile_fields(self, user_id: uuid.UUID, fields: Mapping[str, str]) -> User:
        # 只更新有帶值的欄位
        values = {k: v for k, v in fields.items() if k in PROFILE_FIELDS and v is not None}
        if not values:
            return await self.find_by_id(user_id)
        await self._write(
            user_id,
            values,
            email=values.get("email"),
            username=values.get("username"),
        )
        return await self.find_by_id(user_id)

    @_store_call
    async def bump_token_version(
        self,
        user_id: uuid.UUID,
        new_version: int,
        last_login_at: Optional[datetime] = None,
    ) -> User:
        values: Dict[str, object] = {"token_version": new_version}
        if last_login_at is not None:
            values["last_login_at"] = last_login_at
        await self._write(user_id, values)
        return await self.find_by_id(user_id)

    @_store_call
    async def update_password(self, user_id: uuid.UUID, new_hash: str, new_version: int) -> None:
        # 密碼與版本號同一句 UPDATE，不會只改到其中一個
        await self._write(user_id, {"password_hash": new_hash, "token_version": new_version})

    # === 內部工具 ===
    async def _write(
        self,
        user_id: uuid.UUID,
        values: Mapping[str, object],
        *,
        email: Optional[str] = None,
        username: Optional[str] = None,
    ) -> None:
        stmt = update(User).where(User.id == user_id).values(**values)
        try:
            result = await self.db.execute(stmt)
            if result.rowcount == 0:
                await self.db.rollback()
                raise NotFoundError("User not found")
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            raise await self._conflict(email=email, username=username, exclude_id=user_id) from exc

    async def _conflict(
        self,
        *,
        email: Optional[str],
        username: Optional[str],
        exclude_id: Optional[uuid.UUID] = None,
    ) -> ConflictError:
        # 與 service 的 pre-check 同一個檢查順序與訊息
        if email is not None and await self._exists(User.email, email, exclude_id):
            return ConflictError(EMAIL_IN_USE)
        if username is not None and await self._exists(User.username, username, exclude_id):
            return ConflictError(USERNAME_IN_USE)
        return ConflictError("Username or email already in use")

    async def _exists(self, column, value: str, exclude_id: Optional[uuid.UUID]) -> bool:
        q = select(User.id).where(column == value)
        if exclude_id is not None:
            q = q.where(User.id != exclude_id)
        result = await self.db.execute(q.limit(1))
        return result.scalar_one_or_none() is not None
