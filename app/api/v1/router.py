# app/api/v1/router.py
from fastapi import APIRouter

from .endpoints import users, auth

# === API v1 主路由 ===
api_router = APIRouter()

# 使用者相關（註冊、列表、修改個資 / 密碼）
api_router.include_router(users.router, prefix="/users", tags=["users"])

# 認證 / 登入 / 驗證 Token
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
