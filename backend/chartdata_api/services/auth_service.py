from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import jwt
from passlib.context import CryptContext

from ..config import Settings
from ..time_utils import utc_now


_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


@dataclass(frozen=True)
class TokenData:
    user_id: int
    email: str


def hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return _pwd_context.verify(password, password_hash)


def create_access_token(*, settings: Settings, user_id: int, email: str) -> str:
    now = utc_now()
    exp = now + timedelta(minutes=settings.jwt_exp_minutes)
    payload: dict[str, Any] = {
        "scope": "user",
        "sub": str(user_id),
        "email": email,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256")


def decode_access_token(*, settings: Settings, token: str) -> TokenData:
    payload = jwt.decode(token, settings.jwt_secret, algorithms=["HS256"])
    if payload.get("scope") != "user":
        raise ValueError("invalid token scope")
    sub = payload.get("sub")
    if not sub or not str(sub).isdigit():
        raise ValueError("invalid token sub")
    email = str(payload.get("email") or "").strip()
    if not email:
        raise ValueError("invalid token email")
    return TokenData(user_id=int(sub), email=email)
