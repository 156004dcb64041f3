from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import Settings, load_settings
from .db import DbConnection, fetchone, open_db, row_to_dict
from .services.auth_service import TokenData, decode_access_token
from .services.permissions import PermissionPolicy, load_policy
from .services.request_executor import RequestExecutor
from .services.source_client import SourceClientFactory, make_source_client_factory


_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    id: int
    email: str
    name: str


def get_settings(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    if isinstance(settings, Settings):
        return settings
    return load_settings()


async def get_db(settings: Settings = Depends(get_settings)) -> AsyncIterator[DbConnection]:
    async with open_db(settings) as db:
        yield db


def get_permission_policy(request: Request, settings: Settings = Depends(get_settings)) -> PermissionPolicy:
    policy = getattr(request.app.state, "permission_policy", None)
    if isinstance(policy, PermissionPolicy):
        return policy
    return load_policy(settings.permissions_file)


def get_source_client_factory(settings: Settings = Depends(get_settings)) -> SourceClientFactory:
    return make_source_client_factory(settings)


def get_request_executor(
    db: DbConnection = Depends(get_db),
    client_factory: SourceClientFactory = Depends(get_source_client_factory),
) -> RequestExecutor:
    return RequestExecutor(db, client_factory)


async def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
    settings: Settings = Depends(get_settings),
    db: DbConnection = Depends(get_db),
) -> CurrentUser:
    if creds is None or not creds.credentials:
        raise HTTPException(status_code=401, detail="Not authorized")

    try:
        data: TokenData = decode_access_token(settings=settings, token=creds.credentials.strip())
    except (jwt.PyJWTError, ValueError):
        raise HTTPException(status_code=401, detail="Not authorized") from None

    user_row = await fetchone(db, "SELECT id, email, name FROM users WHERE id = ?", (data.user_id,))
    user = row_to_dict(user_row)
    if not user:
        raise HTTPException(status_code=401, detail="Not authorized")

    return CurrentUser(id=int(user["id"]), email=str(user["email"]), name=str(user["name"]))
