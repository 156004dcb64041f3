from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from ..config import Settings
from ..db import DbConnection
from ..deps import CurrentUser, get_current_user, get_db, get_permission_policy, get_request_executor, get_settings
from ..error_handlers import error_body
from ..errors import NotFoundError, UpstreamError
from ..services.access_chain import AccessContext, walk_access_chain
from ..services.data_request_service import (
    create_data_request,
    delete_data_request,
    list_data_requests,
    update_data_request,
)
from ..services.entity_store import serialize_data_request
from ..services.permissions import DATA_REQUEST, PermissionPolicy
from ..services.request_executor import RequestExecutor, truncate_response_data


router = APIRouter(tags=["dataRequests"])

ROOT = "/team/{team_id}/project/{project_id}/chart/{chart_id}/datasets/{dataset_id}/dataRequests"

_METHOD_PATTERN = r"^(GET|POST|PUT|PATCH|DELETE|get|post|put|patch|delete)$"


class CreateDataRequestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    route: str = Field(default="", max_length=2000)
    method: str = Field(default="GET", pattern=_METHOD_PATTERN)
    configuration: dict[str, Any] = Field(default_factory=dict)
    items_limit: int = Field(default=0, ge=0, alias="itemsLimit")
    connection_id: int | None = Field(default=None, ge=1)


class UpdateDataRequestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    route: str | None = Field(default=None, max_length=2000)
    method: str | None = Field(default=None, pattern=_METHOD_PATTERN)
    configuration: dict[str, Any] | None = None
    items_limit: int | None = Field(default=None, ge=0, alias="itemsLimit")
    connection_id: int | None = Field(default=None, ge=1)


class RunRequestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    no_source: bool = Field(default=False, alias="noSource")
    use_cache: bool = Field(default=False, alias="useCache")
    # older clients send the cache switch as "getCache"
    get_cache: bool | None = Field(default=None, alias="getCache")

    @property
    def wants_cache(self) -> bool:
        return bool(self.use_cache or self.get_cache)


async def _authorize(
    db: DbConnection,
    policy: PermissionPolicy,
    user: CurrentUser,
    *,
    action: str,
    team_id: int,
    project_id: int,
    chart_id: int,
    dataset_id: int,
    data_request_id: int | None = None,
) -> AccessContext:
    ctx = await walk_access_chain(
        db,
        user_id=user.id,
        team_id=team_id,
        project_id=project_id,
        chart_id=chart_id,
        dataset_id=dataset_id,
        data_request_id=data_request_id,
    )
    policy.authorize(ctx.team_role, action, DATA_REQUEST, project_id=project_id)
    return ctx


@router.post(ROOT)
async def create_data_request_route(
    team_id: int,
    project_id: int,
    chart_id: int,
    dataset_id: int,
    req: CreateDataRequestRequest,
    user: CurrentUser = Depends(get_current_user),
    db: DbConnection = Depends(get_db),
    policy: PermissionPolicy = Depends(get_permission_policy),
) -> dict:
    ctx = await _authorize(
        db,
        policy,
        user,
        action="create",
        team_id=team_id,
        project_id=project_id,
        chart_id=chart_id,
        dataset_id=dataset_id,
    )
    return await create_data_request(
        db,
        dataset=ctx.dataset,
        team_id=int(ctx.project["team_id"]),
        values=req.model_dump(by_alias=True, exclude_unset=True),
    )


@router.get(ROOT)
async def list_data_requests_route(
    team_id: int,
    project_id: int,
    chart_id: int,
    dataset_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: DbConnection = Depends(get_db),
    policy: PermissionPolicy = Depends(get_permission_policy),
) -> Any:  # noqa: ANN401
    await _authorize(
        db,
        policy,
        user,
        action="list",
        team_id=team_id,
        project_id=project_id,
        chart_id=chart_id,
        dataset_id=dataset_id,
    )
    try:
        return await list_data_requests(db, dataset_id)
    except NotFoundError as e:
        return JSONResponse(status_code=404, content=error_body(str(e)))


@router.get(ROOT + "/{data_request_id}")
async def get_data_request_route(
    team_id: int,
    project_id: int,
    chart_id: int,
    dataset_id: int,
    data_request_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: DbConnection = Depends(get_db),
    policy: PermissionPolicy = Depends(get_permission_policy),
) -> dict:
    ctx = await _authorize(
        db,
        policy,
        user,
        action="read",
        team_id=team_id,
        project_id=project_id,
        chart_id=chart_id,
        dataset_id=dataset_id,
        data_request_id=data_request_id,
    )
    return serialize_data_request(ctx.data_request)


@router.put(ROOT + "/{data_request_id}")
async def update_data_request_route(
    team_id: int,
    project_id: int,
    chart_id: int,
    dataset_id: int,
    data_request_id: int,
    req: UpdateDataRequestRequest,
    user: CurrentUser = Depends(get_current_user),
    db: DbConnection = Depends(get_db),
    policy: PermissionPolicy = Depends(get_permission_policy),
) -> dict:
    ctx = await _authorize(
        db,
        policy,
        user,
        action="update",
        team_id=team_id,
        project_id=project_id,
        chart_id=chart_id,
        dataset_id=dataset_id,
        data_request_id=data_request_id,
    )
    return await update_data_request(
        db,
        existing=ctx.data_request,
        team_id=int(ctx.project["team_id"]),
        values=req.model_dump(by_alias=True, exclude_unset=True),
    )


@router.delete(ROOT + "/{data_request_id}")
async def delete_data_request_route(
    team_id: int,
    project_id: int,
    chart_id: int,
    dataset_id: int,
    data_request_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: DbConnection = Depends(get_db),
    policy: PermissionPolicy = Depends(get_permission_policy),
) -> dict:
    await _authorize(
        db,
        policy,
        user,
        action="delete",
        team_id=team_id,
        project_id=project_id,
        chart_id=chart_id,
        dataset_id=dataset_id,
        data_request_id=data_request_id,
    )
    await delete_data_request(db, data_request_id)
    return {"removed": True}


@router.post(ROOT + "/{data_request_id}/request")
async def run_data_request_route(
    team_id: int,
    project_id: int,
    chart_id: int,
    dataset_id: int,
    data_request_id: int,
    req: RunRequestRequest | None = None,
    user: CurrentUser = Depends(get_current_user),
    db: DbConnection = Depends(get_db),
    policy: PermissionPolicy = Depends(get_permission_policy),
    executor: RequestExecutor = Depends(get_request_executor),
    settings: Settings = Depends(get_settings),
) -> Any:  # noqa: ANN401
    ctx = await _authorize(
        db,
        policy,
        user,
        action="execute",
        team_id=team_id,
        project_id=project_id,
        chart_id=chart_id,
        dataset_id=dataset_id,
        data_request_id=data_request_id,
    )
    options = req or RunRequestRequest()
    try:
        result = await executor.execute(
            data_request_id,
            chart_id,
            no_source=options.no_source,
            use_cache=options.wants_cache,
        )
    except UpstreamError as e:
        # The upstream error is the result: the caller inspects it like any other response.
        data_request = serialize_data_request(ctx.data_request)
        data_request["responseData"] = truncate_response_data(data_request["responseData"], settings.response_items_cap)
        return JSONResponse(
            status_code=200,
            content={
                "dataRequest": jsonable_encoder(data_request),
                "error": e.message,
                "status": e.status_code,
                "body": jsonable_encoder(e.body),
            },
        )
    return result.to_wire(settings.response_items_cap)
