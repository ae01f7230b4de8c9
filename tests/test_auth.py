import pytest
from fastapi import HTTPException
from httpx import AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.security import create_access_token
from app.core.config import settings
from app.main import app


def token_for(user, tenant_id, role: str, expires_minutes=None) -> str:
    return create_access_token(
        subject={"user_id": user.id, "tenant_id": tenant_id, "role": role},
        expires_minutes=expires_minutes,
    )


@pytest.mark.asyncio
async def test_token_carries_string_claims(school) -> None:
    token = token_for(school.admin, school.tenant.id, "SUPER_ADMIN")
    payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    assert payload["user_id"] == str(school.admin.id)
    assert payload["tenant_id"] == str(school.tenant.id)
    assert payload["role"] == "SUPER_ADMIN"
    assert "exp" in payload


@pytest.mark.asyncio
async def test_current_user_resolves_role_permissions(db_session: AsyncSession, school) -> None:
    token = token_for(school.accountant, school.tenant.id, "ACCOUNTANT")
    user = await get_current_user(token=token, db=db_session)
    assert user.id == school.accountant.id
    assert user.tenant_id == school.tenant.id
    assert user.role == "ACCOUNTANT"
    assert user.permissions["fees"] == {"read": True, "collect": True}


@pytest.mark.asyncio
async def test_current_user_rejects_bad_tokens(db_session: AsyncSession, school) -> None:
    expired = token_for(school.admin, school.tenant.id, "SUPER_ADMIN", expires_minutes=-1)
    # User exists, but not in the school the token claims
    wrong_school = token_for(school.admin, school.other_tenant.id, "SUPER_ADMIN")
    for token in (expired, wrong_school, "not-a-jwt"):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(token=token, db=db_session)
        assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_bearer_token_end_to_end(client: AsyncClient, school) -> None:
    app.dependency_overrides.pop(get_current_user, None)

    response = await client.get("/api/v1/fee-collections")
    assert response.status_code == 401

    token = token_for(school.accountant, school.tenant.id, "ACCOUNTANT")
    headers = {"Authorization": f"Bearer {token}"}
    response = await client.get("/api/v1/fee-collections", headers=headers)
    assert response.status_code == 200

    response = await client.get("/api/v1/promo-codes/stats", headers=headers)
    assert response.status_code == 200

    response = await client.post(
        "/api/v1/promo-codes/redeem",
        json={"code": "ANY", "product_id": str(school.textbook.id)},
        headers=headers,
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_openapi_advertises_plain_bearer_scheme(client: AsyncClient, school) -> None:
    app.dependency_overrides.pop(get_current_user, None)

    schema = (await client.get("/openapi.json")).json()
    schemes = schema["components"]["securitySchemes"]
    assert [(s["type"], s.get("scheme")) for s in schemes.values()] == [("http", "bearer")]
    assert not any("flows" in s for s in schemes.values())
    assert "/api/v1/auth/login-oauth" not in schema["paths"]

    token = token_for(school.accountant, school.tenant.id, "ACCOUNTANT")
    response = await client.get("/api/v1/fee-collections", headers={"Authorization": f"Basic {token}"})
    assert response.status_code == 401
