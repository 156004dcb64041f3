"""Ownership chain checks for data request routes.

A request addresses a data request through ``project -> chart -> dataset ->
data request``. Every hop must be the parent of the next one, otherwise a
caller holding a valid project/chart pair could reach another chart's data
requests by guessing ids. The walk is a fixed list of steps run in order;
the first failing step wins. Each step reads what the steps before it
loaded, so the order built by ``build_steps`` is part of the contract.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from ..db import DbConnection
from ..errors import NotFoundError, UnauthorizedError
from .entity_store import get_chart, get_data_request_row, get_dataset, get_project
from .team_roles import TeamRole, resolve_team_role


logger = logging.getLogger(__name__)


@dataclass
class AccessContext:
    user_id: int
    project_id: int
    chart_id: int
    team_id: int | None = None
    dataset_id: int | None = None
    data_request_id: int | None = None

    project: dict[str, Any] | None = None
    chart: dict[str, Any] | None = None
    dataset: dict[str, Any] | None = None
    data_request: dict[str, Any] | None = None
    team_role: TeamRole | None = None


Step = Callable[[DbConnection, AccessContext], Awaitable[None]]


def _deny(ctx: AccessContext, reason: str) -> UnauthorizedError:
    logger.warning(
        "access chain rejected user=%s project=%s chart=%s dataRequest=%s: %s",
        ctx.user_id,
        ctx.project_id,
        ctx.chart_id,
        ctx.data_request_id,
        reason,
    )
    return UnauthorizedError(reason)


async def load_project(db: DbConnection, ctx: AccessContext) -> None:
    ctx.project = await get_project(db, ctx.project_id)


async def check_project_team(db: DbConnection, ctx: AccessContext) -> None:
    if ctx.team_id is not None and int(ctx.project["team_id"]) != int(ctx.team_id):
        raise _deny(ctx, "project does not belong to the team in the path")


async def load_chart(db: DbConnection, ctx: AccessContext) -> None:
    ctx.chart = await get_chart(db, ctx.chart_id)


async def check_chart_project(db: DbConnection, ctx: AccessContext) -> None:
    if int(ctx.chart["project_id"]) != int(ctx.project["id"]):
        raise _deny(ctx, "chart does not belong to the project")


async def load_data_request(db: DbConnection, ctx: AccessContext) -> None:
    ctx.data_request = await get_data_request_row(db, ctx.data_request_id)


async def load_owning_dataset(db: DbConnection, ctx: AccessContext) -> None:
    ctx.dataset = await get_dataset(db, int(ctx.data_request["dataset_id"]))


async def load_path_dataset(db: DbConnection, ctx: AccessContext) -> None:
    ctx.dataset = await get_dataset(db, ctx.dataset_id)


async def check_dataset_chart(db: DbConnection, ctx: AccessContext) -> None:
    if int(ctx.dataset["chart_id"]) != int(ctx.chart["id"]):
        raise _deny(ctx, "dataset does not belong to the chart")


async def check_data_request_path_dataset(db: DbConnection, ctx: AccessContext) -> None:
    if ctx.dataset_id is not None and int(ctx.data_request["dataset_id"]) != int(ctx.dataset_id):
        raise _deny(ctx, "data request does not belong to the dataset in the path")


async def resolve_role(db: DbConnection, ctx: AccessContext) -> None:
    try:
        ctx.team_role = await resolve_team_role(db, int(ctx.project["team_id"]), ctx.user_id)
    except NotFoundError:
        raise _deny(ctx, "caller is not a member of the owning team") from None


def build_steps(ctx: AccessContext) -> list[Step]:
    steps: list[Step] = [load_project, check_project_team, load_chart, check_chart_project]
    if ctx.data_request_id is not None:
        steps += [load_data_request, load_owning_dataset, check_dataset_chart, check_data_request_path_dataset]
    elif ctx.dataset_id is not None:
        steps += [load_path_dataset, check_dataset_chart]
    steps.append(resolve_role)
    return steps


async def walk_access_chain(
    db: DbConnection,
    *,
    user_id: int,
    project_id: int,
    chart_id: int,
    team_id: int | None = None,
    dataset_id: int | None = None,
    data_request_id: int | None = None,
) -> AccessContext:
    ctx = AccessContext(
        user_id=int(user_id),
        project_id=int(project_id),
        chart_id=int(chart_id),
        team_id=team_id,
        dataset_id=dataset_id,
        data_request_id=data_request_id,
    )
    for step in build_steps(ctx):
        await step(db, ctx)
    if ctx.team_role is None:
        raise _deny(ctx, "no role resolved")
    return ctx


async def check_access(
    db: DbConnection,
    *,
    user_id: int,
    project_id: int,
    chart_id: int,
    data_request_id: int | None = None,
) -> TeamRole:
    ctx = await walk_access_chain(
        db,
        user_id=user_id,
        project_id=project_id,
        chart_id=chart_id,
        data_request_id=data_request_id,
    )
    return ctx.team_role
