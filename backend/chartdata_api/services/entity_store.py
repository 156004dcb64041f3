"""Lookups over the team -> project -> chart -> dataset -> data request tree."""

from __future__ import annotations

from typing import Any

from ..db import DbConnection, fetchall, fetchone, json_loads, row_to_dict, rows_to_dicts
from ..errors import NotFoundError


_DATA_REQUEST_COLUMNS = """
  id, dataset_id, connection_id, route, method, configuration_json, items_limit,
  response_json, response_updated_at, created_at, updated_at
"""


async def _get_by_id(db: DbConnection, kind: str, sql: str, ident: int) -> dict[str, Any]:
    data = row_to_dict(await fetchone(db, sql, (int(ident),)))
    if not data:
        raise NotFoundError(kind, ident)
    return data


async def get_project(db: DbConnection, project_id: int) -> dict[str, Any]:
    return await _get_by_id(
        db,
        "project",
        "SELECT id, team_id, name, created_at, updated_at FROM projects WHERE id = ?",
        project_id,
    )


async def get_chart(db: DbConnection, chart_id: int) -> dict[str, Any]:
    return await _get_by_id(
        db,
        "chart",
        "SELECT id, project_id, name, created_at, updated_at FROM charts WHERE id = ?",
        chart_id,
    )


async def get_dataset(db: DbConnection, dataset_id: int) -> dict[str, Any]:
    return await _get_by_id(
        db,
        "dataset",
        "SELECT id, chart_id, connection_id, legend, created_at, updated_at FROM datasets WHERE id = ?",
        dataset_id,
    )


async def get_connection(db: DbConnection, connection_id: int) -> dict[str, Any]:
    return await _get_by_id(
        db,
        "connection",
        "SELECT id, team_id, type, name, host, api_key, created_at, updated_at FROM connections WHERE id = ?",
        connection_id,
    )


async def get_data_request_row(db: DbConnection, data_request_id: int) -> dict[str, Any]:
    return await _get_by_id(
        db,
        "dataRequest",
        f"SELECT {_DATA_REQUEST_COLUMNS} FROM data_requests WHERE id = ?",
        data_request_id,
    )


async def list_data_request_rows(db: DbConnection, dataset_id: int) -> list[dict[str, Any]]:
    rows = await fetchall(
        db,
        f"SELECT {_DATA_REQUEST_COLUMNS} FROM data_requests WHERE dataset_id = ? ORDER BY id ASC",
        (int(dataset_id),),
    )
    return rows_to_dicts(list(rows))


def serialize_data_request(row: dict[str, Any]) -> dict[str, Any]:
    """Shape a stored row the way the query builder reads and writes it."""
    connection_id = row.get("connection_id")
    return {
        "id": int(row["id"]),
        "dataset_id": int(row["dataset_id"]),
        "connection_id": int(connection_id) if connection_id is not None else None,
        "route": str(row.get("route") or ""),
        "method": str(row.get("method") or "GET"),
        "configuration": json_loads(row.get("configuration_json"), {}),
        "itemsLimit": int(row.get("items_limit") or 0),
        "responseData": json_loads(row.get("response_json"), None),
        "responseUpdatedAt": row.get("response_updated_at"),
        "createdAt": row.get("created_at"),
        "updatedAt": row.get("updated_at"),
    }
