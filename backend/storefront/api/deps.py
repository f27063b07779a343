"""
FastAPI dependencies

Reusable dependencies for the route handlers:

- SessionDep: one database session per request
- CurrentUser: the user behind the bearer token
- ProvidersDep: provider clients, built once from settings
- RawBody: the unparsed request body (webhook signatures are computed over it)
"""
from collections.abc import Generator
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt.exceptions import InvalidTokenError
from pydantic import ValidationError
from sqlmodel import Session

from storefront.api.schemas import TokenPayload
from storefront.core import security
from storefront.core.config import settings
from storefront.core.db import engine
from storefront.crud import users as users_crud
from storefront.integrations.registry import ProviderRegistry, build_provider_registry
from storefront.models import User

# Reads "Authorization: Bearer <token>"
reusable_oauth2 = HTTPBearer()


def get_db() -> Generator[Session, None, None]:
    """
    Database session for one request

    The session is closed when the request finishes; uncommitted work is
    rolled back.
    """
    with Session(engine) as session:
        yield session


SessionDep = Annotated[Session, Depends(get_db)]
TokenDep = Annotated[HTTPAuthorizationCredentials, Depends(reusable_oauth2)]


def get_current_user(session: SessionDep, token: TokenDep) -> User:
    """
    Resolve the bearer token to an active user

    Raises:
        HTTPException: 401 for an invalid token, an unknown or inactive user
    """
    try:
        payload = security.decode_access_token(token.credentials)
        token_data = TokenPayload(**payload)
    except (InvalidTokenError, ValidationError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    if not token_data.sub:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    user = users_crud.get_by_id(session=session, user_id=token_data.sub)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Inactive user")
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


@lru_cache
def get_provider_registry() -> ProviderRegistry:
    """Provider clients for the process; tests override this dependency."""
    return build_provider_registry(settings)


ProvidersDep = Annotated[ProviderRegistry, Depends(get_provider_registry)]


async def get_raw_body(request: Request) -> bytes:
    return await request.body()


RawBody = Annotated[bytes, Depends(get_raw_body)]
