from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..config import Settings
from ..db import DbConnection, fetchall, fetchone, row_to_dict, rows_to_dicts
from ..deps import CurrentUser, get_current_user, get_db, get_settings
from ..services.auth_service import create_access_token, verify_password
from ..services.team_roles import parse_projects


router = APIRouter(tags=["auth"])


class LoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=254)
    password: str = Field(min_length=1, max_length=128)


class AuthResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: dict
    teams: list[dict]


async def _list_teams(db: DbConnection, user_id: int) -> list[dict]:
    rows = await fetchall(
        db,
        """
        SELECT t.id AS id, t.name AS name, m.role AS role, m.projects_json AS projects_json
        FROM memberships m
        JOIN teams t ON t.id = m.team_id
        WHERE m.user_id = ?
        ORDER BY t.id ASC
        """,
        (int(user_id),),
    )
    return [
        {
            "id": int(r["id"]),
            "name": str(r["name"]),
            "role": str(r["role"]),
            "projects": list(parse_projects(r.get("projects_json"))),
        }
        for r in rows_to_dicts(list(rows))
    ]


@router.post("/auth/login", response_model=AuthResponse)
async def login(
    req: LoginRequest,
    settings: Settings = Depends(get_settings),
    db: DbConnection = Depends(get_db),
) -> AuthResponse:
    email = req.email.strip().lower()
    user = row_to_dict(
        await fetchone(db, "SELECT id, email, name, password_hash FROM users WHERE email = ?", (email,))
    )
    if not user or not verify_password(req.password, str(user["password_hash"])):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    user_id = int(user["id"])
    token = create_access_token(settings=settings, user_id=user_id, email=email)
    return AuthResponse(
        access_token=token,
        user={"id": user_id, "email": email, "name": str(user["name"])},
        teams=await _list_teams(db, user_id),
    )


@router.get("/me")
async def me(
    user: CurrentUser = Depends(get_current_user),
    db: DbConnection = Depends(get_db),
) -> dict:
    return {
        "user": {"id": user.id, "email": user.email, "name": user.name},
        "teams": await _list_teams(db, user.id),
    }
