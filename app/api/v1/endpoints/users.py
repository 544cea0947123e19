# app/api/v1/endpoints/users.py
from typing import List
from fastapi import APIRouter, Depends, Response, status

from app.core.deps import get_current_user, get_identity_service, oauth2_scheme
from app.models.users import User
from app.schemas.auth import RegisterResponse
from app.schemas.user import PasswordChange, UserCreate, UserPublic, UserRead, UserSummary, UserUpdate
from app.services.identity import IdentityService

router = APIRouter(tags=["users"])


# === 註冊（開放） ===
@router.post("", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    payload: UserCreate,
    service: IdentityService = Depends(get_identity_service),
):
    user, token = await service.register(
        first_name=payload.first_name,
        last_name=payload.last_name,
        username=payload.username,
        email=payload.email,
        password=payload.password,
    )
    # 回應不含 password_hash
    return RegisterResponse(user=UserPublic.model_validate(user), token=token)


# === 取得使用者列表（含角色，需要登入） ===
@router.get("", response_model=List[UserSummary])
async def list_users(
    service: IdentityService = Depends(get_identity_service),
    _: User = Depends(get_current_user),  # 需要 Bearer Token；用 "_" 表示僅驗證不使用變數
):
    return await service.list_users()


# === 修改個資（只改有帶的欄位） ===
@router.patch("/me", response_model=UserRead)
async def update_me(
    payload: UserUpdate,
    token: str = Depends(oauth2_scheme),
    service: IdentityService = Depends(get_identity_service),
):
    return await service.update_profile(token, payload.model_dump(exclude_none=True))


# === 修改密碼（成功後所有 token 失效，包含這次用的） ===
@router.put("/me/password", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
async def update_my_password(
    payload: PasswordChange,
    token: str = Depends(oauth2_scheme),
    service: IdentityService = Depends(get_identity_service),
):
    await service.update_password(token, payload.old_password, payload.new_password)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
