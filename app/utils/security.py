from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.config import settings
from app.dependencies import get_db
from app.models.user_model import User
from app.utils.logging_config import get_logger, log_security_event, user_id as user_id_context

logger = get_logger(__name__)

# Tokens are issued by the identity provider; this service only verifies them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")


def _credentials_error(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


class TokenManager:
    """JWT encode/decode with the shared secret"""

    @staticmethod
    def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
        to_encode = data.copy()
        expire = datetime.now(timezone.utc) + (
            expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        )
        to_encode.update({"exp": expire, "type": "access"})
        return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    @staticmethod
    def decode_token(token: str) -> dict:
        """Decode and verify a JWT token"""
        try:
            return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        except JWTError as e:
            raise ValueError("Invalid or expired token") from e


async def authenticate_token(db: AsyncSession, token: Optional[str]) -> User:
    """Resolve a bearer token to its user or raise 401"""
    if not token:
        raise _credentials_error("Not authenticated")

    try:
        payload = TokenManager.decode_token(token)
    except ValueError:
        log_security_event(event_type="invalid_token")
        raise _credentials_error("Could not validate credentials")

    subject = payload.get("sub")
    if subject is None:
        raise _credentials_error("Token does not contain user ID")
    if payload.get("type") != "access":
        raise _credentials_error("Invalid token type")

    try:
        user_uuid = UUID(str(subject))
    except ValueError:
        raise _credentials_error("Token does not contain a valid user ID")

    result = await db.execute(select(User).where(User.id == user_uuid))
    user = result.scalar_one_or_none()
    if user is None:
        log_security_event(event_type="unknown_token_subject", user_id=str(user_uuid))
        raise _credentials_error("User not found")

    user_id_context.set(str(user.id))
    return user


async def get_current_user(
    db: AsyncSession = Depends(get_db),
    token: str = Depends(oauth2_scheme),
) -> User:
    return await authenticate_token(db, token)


async def get_current_user_ws(token: Optional[str], db: AsyncSession) -> User:
    """Authenticate a WebSocket or SSE connection from its ``access_token`` query value"""
    try:
        return await authenticate_token(db, token)
    except HTTPException as e:
        logger.warning(
            "Real-time connection authentication failed",
            extra={"event_type": "realtime_auth_failed", "error": str(e.detail)},
        )
        raise
