"""Role based permission table.

The table maps ``resource kind -> role -> action -> decision``. ``"*"`` works
as a wildcard for both resource kinds and actions; the most specific entry
wins. Decisions:

- ``allow``: granted.
- ``deny``: refused.
- ``project``: granted only when the caller has accessible projects and the
  project being addressed is one of them.

Anything the table does not mention is denied.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, Literal, Mapping

from pydantic import BaseModel, ValidationError as PydanticValidationError

from ..errors import UnauthorizedError
from .team_roles import PROJECT_ADMIN, PROJECT_VIEWER, TEAM_ADMIN, TEAM_OWNER, TeamRole


logger = logging.getLogger(__name__)

ALLOW = "allow"
DENY = "deny"
PROJECT = "project"
WILDCARD = "*"

Decision = Literal["allow", "deny", "project"]

DATA_REQUEST = "dataRequest"
ACTIONS = ("create", "list", "read", "update", "delete", "execute")

DEFAULT_RULES: dict[str, dict[str, dict[str, str]]] = {
    WILDCARD: {
        TEAM_OWNER: {WILDCARD: ALLOW},
        TEAM_ADMIN: {WILDCARD: ALLOW},
    },
    DATA_REQUEST: {
        PROJECT_ADMIN: {
            "create": PROJECT,
            "list": PROJECT,
            "read": PROJECT,
            "execute": PROJECT,
            "update": DENY,
            "delete": DENY,
        },
        PROJECT_VIEWER: {
            "list": PROJECT,
            "read": PROJECT,
            "execute": PROJECT,
        },
    },
}


class PermissionTable(BaseModel):
    rules: dict[str, dict[str, dict[str, Decision]]]


class PermissionPolicy:
    def __init__(self, rules: Mapping[str, Mapping[str, Mapping[str, str]]]) -> None:
        self._rules = {kind: {role: dict(actions) for role, actions in roles.items()} for kind, roles in rules.items()}

    def decision(self, role: str, action: str, resource_kind: str) -> str:
        for kind in (resource_kind, WILDCARD):
            by_action = self._rules.get(kind, {}).get(role)
            if not by_action:
                continue
            for act in (action, WILDCARD):
                if act in by_action:
                    return by_action[act]
        return DENY

    def is_allowed(
        self,
        role: str,
        action: str,
        resource_kind: str,
        *,
        project_id: int | None = None,
        projects: Iterable[int] = (),
    ) -> bool:
        decision = self.decision(role, action, resource_kind)
        if decision == ALLOW:
            return True
        if decision != PROJECT:
            return False
        accessible = {int(p) for p in projects}
        if not accessible:
            return False
        # Scoped to the addressed project, a non-empty list elsewhere is not enough.
        return project_id is None or int(project_id) in accessible

    def authorize(self, team_role: TeamRole, action: str, resource_kind: str, *, project_id: int | None) -> None:
        if not self.is_allowed(
            team_role.role,
            action,
            resource_kind,
            project_id=project_id,
            projects=team_role.projects,
        ):
            logger.warning(
                "permission denied user=%s role=%s action=%s kind=%s project=%s",
                team_role.user_id,
                team_role.role,
                action,
                resource_kind,
                project_id,
            )
            raise UnauthorizedError(f"{team_role.role} may not {action} {resource_kind}")


def load_policy(path: Path | None = None) -> PermissionPolicy:
    if path is None:
        return PermissionPolicy(DEFAULT_RULES)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        table = PermissionTable.model_validate({"rules": raw})
    except (OSError, json.JSONDecodeError, PydanticValidationError) as e:
        raise RuntimeError(f"invalid permissions file {path}: {e}") from e
    logger.info("loaded permission table from %s", path)
    return PermissionPolicy(table.rules)
