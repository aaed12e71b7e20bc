# mentra/app/api/deps.py
from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError
from pydantic import BaseModel, ValidationError

from mentra.app.core.config import settings
from mentra.app.schemas.journal import RequestInfo
from mentra.app.services.journal_repository import JournalEntryRepository

# Tokens are issued by the platform's auth service; this one only verifies them
reusable_oauth2 = OAuth2PasswordBearer(
    tokenUrl=f"{settings.API_V1_STR}/auth/login"
)


class TokenPayload(BaseModel):
    sub: str
    role: str = "student"


class CurrentUser(BaseModel):
    id: str
    role: str


async def get_current_user(token: str = Depends(reusable_oauth2)) -> CurrentUser:
    try:
        payload = jwt.decode(
            token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM]
        )
        token_data = TokenPayload(**payload)
    except (JWTError, ValidationError):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Could not validate credentials",
        )

    return CurrentUser(id=token_data.sub, role=token_data.role)


def require_roles(*roles: str) -> Callable:
    """Dependency factory: 403 unless the caller holds one of ``roles``."""

    async def checker(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user

    return checker


def get_repository(request: Request) -> JournalEntryRepository:
    return request.app.state.journal_repository


def get_request_info(
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
) -> RequestInfo:
    client_host: Optional[str] = request.client.host if request.client else None
    return RequestInfo(
        source=request.headers.get("x-client-source", "web"),
        ip_address=client_host,
        user_agent=request.headers.get("user-agent"),
        user_role=current_user.role,
    )
