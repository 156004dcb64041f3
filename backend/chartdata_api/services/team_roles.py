from __future__ import annotations

import json
from dataclasses import dataclass

from ..db import DbConnection, fetchone, row_to_dict
from ..errors import NotFoundError


TEAM_OWNER = "teamOwner"
TEAM_ADMIN = "teamAdmin"
PROJECT_ADMIN = "projectAdmin"
PROJECT_VIEWER = "projectViewer"


@dataclass(frozen=True)
class TeamRole:
    team_id: int
    user_id: int
    role: str
    projects: tuple[int, ...] = ()

    def can_access_project(self, project_id: int) -> bool:
        return int(project_id) in self.projects


def parse_projects(raw: str | None) -> tuple[int, ...]:
    if not raw:
        return ()
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return ()
    if not isinstance(value, list):
        return ()
    out: list[int] = []
    for item in value:
        try:
            out.append(int(item))
        except (TypeError, ValueError):
            continue
    return tuple(out)


async def resolve_team_role(db: DbConnection, team_id: int, user_id: int) -> TeamRole:
    row = await fetchone(
        db,
        "SELECT team_id, user_id, role, projects_json FROM memberships WHERE team_id = ? AND user_id = ?",
        (int(team_id), int(user_id)),
    )
    data = row_to_dict(row)
    if not data:
        raise NotFoundError("teamRole", f"team={team_id} user={user_id}")
    return TeamRole(
        team_id=int(data["team_id"]),
        user_id=int(data["user_id"]),
        role=str(data.get("role") or ""),
        projects=parse_projects(data.get("projects_json")),
    )
