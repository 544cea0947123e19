# app/api/v1/endpoints/auth.py
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from app.core.deps import get_current_user, get_identity_service
from app.models.users import User
from app.schemas.auth import (
    SignInRequest,
    SignInResponse,
    TokenRejection,
    TokenVerification,
    VerifyTokenRequest,
)
from app.schemas.user import UserRead, UserSignedIn
from app.services.identity import IdentityService

router = APIRouter(tags=["auth"])


# === 登入 ===
@router.post("/sign-in", response_model=SignInResponse)
async def sign_in(
    payload: SignInRequest,
    service: IdentityService = Depends(get_identity_service),
):
    """
    帳號或 email 皆可登入。
    成功後 token_version 會換新，先前簽出的 token 全部失效。
    """
    user, token = await service.sign_in(payload.username_or_email, payload.password)
    return SignInResponse(user=UserSignedIn.model_validate(user), token=token)


# === 驗證 Token（不會回 401，一律回 valid/reason） ===
@router.post("/verify-token", response_model=TokenVerification, response_model_exclude_none=True)
async def verify_token(
    payload: VerifyTokenRequest,
    service: IdentityService = Depends(get_identity_service),
):
    if payload.token is None:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"valid": False, "reason": TokenRejection.NO_TOKEN.value},
        )
    return await service.verify_token(payload.token)


# === 目前登入者 ===
@router.get("/me", response_model=UserRead)
async def read_me(current_user: User = Depends(get_current_user)):
    return current_user
