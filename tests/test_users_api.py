# tests/test_users_api.py
import pytest
from httpx import AsyncClient
from jose import jwt

from app.core.config import settings

pytestmark = pytest.mark.anyio


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def test_register_scenario(client: AsyncClient, new_user):
    data = new_user("jane")
    r = await client.post("/api/v1/users", json=data)
    assert r.status_code == 201, r.text

    body = r.json()
    assert body["user"]["username"] == data["username"]
    assert body["user"]["email"] == data["email"]
    assert "id" in body["user"]
    assert "password" not in body["user"] and "password_hash" not in body["user"]

    claims = jwt.decode(body["token"], settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    assert claims["token_version"] == 0
    assert claims["sub"] == body["user"]["id"]


async def test_register_duplicate_email_is_conflict(client: AsyncClient, new_user):
    data = new_user("twin")
    assert (await client.post("/api/v1/users", json=data)).status_code == 201

    again = new_user("twin")
    again["email"] = data["email"]
    r = await client.post("/api/v1/users", json=again)
    assert r.status_code == 409
    assert r.json() == {"detail": "Email already in use"}


async def test_register_short_username_is_rejected(client: AsyncClient, new_user):
    data = new_user("shorty")
    data["username"] = "ab"
    r = await client.post("/api/v1/users", json=data)
    assert r.status_code == 400
    assert "Username" in r.json()["detail"]


async def test_list_users_requires_auth_and_reports_roles(client: AsyncClient, new_user):
    r = await client.get("/api/v1/users")
    assert r.status_code == 401

    data = new_user("lister")
    token = (await client.post("/api/v1/users", json=data)).json()["token"]

    r = await client.get("/api/v1/users", headers=_auth(token))
    assert r.status_code == 200, r.text
    mine = [u for u in r.json() if u["username"] == data["username"]]
    assert mine == [{
        "username": data["username"],
        "email": data["email"],
        "first_name": data["first_name"],
        "last_name": data["last_name"],
        "roles": ["default"],
    }]


async def test_patch_me_updates_only_given_fields(client: AsyncClient, new_user):
    data = new_user("patch")
    token = (await client.post("/api/v1/users", json=data)).json()["token"]

    r = await client.patch("/api/v1/users/me", json={"last_name": "Smith"}, headers=_auth(token))
    assert r.status_code == 200, r.text
    assert r.json()["last_name"] == "Smith"
    assert r.json()["first_name"] == data["first_name"]

    # 個資更新不影響既有 token
    r = await client.post("/api/v1/auth/verify-token", json={"token": token})
    assert r.json() == {"valid": True}


async def test_patch_me_conflict(client: AsyncClient, new_user):
    taken = new_user("owner")
    await client.post("/api/v1/users", json=taken)
    data = new_user("mover")
    token = (await client.post("/api/v1/users", json=data)).json()["token"]

    r = await client.patch("/api/v1/users/me", json={"email": taken["email"]}, headers=_auth(token))
    assert r.status_code == 409


async def test_patch_me_without_header(client: AsyncClient):
    r = await client.patch("/api/v1/users/me", json={"first_name": "Nobody"})
    assert r.status_code == 401


async def test_change_password_flow(client: AsyncClient, new_user):
    data = new_user("chg")
    await client.post("/api/v1/users", json=data)
    token = (await client.post(
        "/api/v1/auth/sign-in",
        json={"username_or_email": data["username"], "password": data["password"]},
    )).json()["token"]

    # 不符合複雜度
    r = await client.put(
        "/api/v1/users/me/password",
        json={"old_password": data["password"], "new_password": "NoSpecial1"},
        headers=_auth(token),
    )
    assert r.status_code == 400
    assert "special" in r.json()["detail"]

    # 舊密碼錯誤
    r = await client.put(
        "/api/v1/users/me/password",
        json={"old_password": "Wrong1Pass!", "new_password": "Another2Pass#"},
        headers=_auth(token),
    )
    assert r.status_code == 401

    r = await client.put(
        "/api/v1/users/me/password",
        json={"old_password": data["password"], "new_password": "Another2Pass#"},
        headers=_auth(token),
    )
    assert r.status_code == 204, r.text
    assert r.content == b""

    # 剛用過的 token 也一起失效
    r = await client.post("/api/v1/auth/verify-token", json={"token": token})
    assert r.json() == {"valid": False, "reason": "token_version_mismatch"}
    r = await client.patch("/api/v1/users/me", json={"first_name": "Again"}, headers=_auth(token))
    assert r.status_code == 401

    r = await client.post(
        "/api/v1/auth/sign-in",
        json={"username_or_email": data["email"], "password": "Another2Pass#"},
    )
    assert r.status_code == 200
