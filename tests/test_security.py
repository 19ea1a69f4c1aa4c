from datetime import timedelta
from uuid import uuid4

import pytest
from fastapi import HTTPException
from jose import jwt

from app.config import settings
from app.utils.security import TokenManager, authenticate_token


class TestTokenManager:
    def test_access_token_carries_subject_and_type(self):
        token = TokenManager.create_access_token({"sub": "abc"})
        payload = TokenManager.decode_token(token)
        assert payload["sub"] == "abc"
        assert payload["type"] == "access"
        assert "exp" in payload

    def test_expired_token(self):
        token = TokenManager.create_access_token({"sub": "abc"}, timedelta(seconds=-5))
        with pytest.raises(ValueError):
            TokenManager.decode_token(token)

    def test_tampered_token(self):
        token = jwt.encode({"sub": "abc"}, "another-secret", algorithm=settings.ALGORITHM)
        with pytest.raises(ValueError):
            TokenManager.decode_token(token)


class TestAuthenticateToken:
    async def test_resolves_user(self, db_session, requester):
        token = TokenManager.create_access_token({"sub": str(requester.id)})
        user = await authenticate_token(db_session, token)
        assert user.id == requester.id

    @pytest.mark.parametrize(
        "claims, detail",
        [
            ({}, "Token does not contain user ID"),
            ({"sub": "not-a-uuid"}, "Token does not contain a valid user ID"),
        ],
    )
    async def test_bad_claims(self, db_session, claims, detail):
        token = TokenManager.create_access_token(claims)
        with pytest.raises(HTTPException) as exc_info:
            await authenticate_token(db_session, token)
        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == detail

    async def test_unknown_user(self, db_session):
        token = TokenManager.create_access_token({"sub": str(uuid4())})
        with pytest.raises(HTTPException) as exc_info:
            await authenticate_token(db_session, token)
        assert exc_info.value.detail == "User not found"

    async def test_wrong_token_type(self, db_session, requester):
        token = jwt.encode(
            {"sub": str(requester.id), "type": "refresh"},
            settings.SECRET_KEY,
            algorithm=settings.ALGORITHM,
        )
        with pytest.raises(HTTPException) as exc_info:
            await authenticate_token(db_session, token)
        assert exc_info.value.detail == "Invalid token type"

    async def test_missing_token(self, db_session):
        with pytest.raises(HTTPException) as exc_info:
            await authenticate_token(db_session, None)
        assert exc_info.value.status_code == 401
