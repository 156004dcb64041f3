from __future__ import annotations

import logging
from typing import Any

from ..db import DbConnection, fetchone, json_dumps, json_loads
from ..errors import NotFoundError, ValidationError
from ..time_utils import utc_now_iso
from .entity_store import get_connection, get_data_request_row, list_data_request_rows, serialize_data_request


logger = logging.getLogger(__name__)

# Changing any of these makes the cached response stale.
QUERY_FIELDS = ("route", "method", "configuration_json", "items_limit", "connection_id")


async def _check_connection(db: DbConnection, connection_id: int | None, team_id: int) -> int | None:
    if connection_id is None:
        return None
    try:
        connection = await get_connection(db, connection_id)
    except NotFoundError:
        raise ValidationError("connection not found", {"connection_id": connection_id}) from None
    if int(connection["team_id"]) != int(team_id):
        raise ValidationError("connection does not belong to the team", {"connection_id": connection_id})
    return int(connection["id"])


async def _check_connection_free(
    db: DbConnection, dataset_id: int, connection_id: int | None, *, exclude_id: int | None = None
) -> None:
    # A dataset holds at most one data request per connection.
    if connection_id is None:
        return
    row = await fetchone(
        db,
        "SELECT id FROM data_requests WHERE dataset_id = ? AND connection_id = ? AND id != ?",
        (int(dataset_id), int(connection_id), int(exclude_id or 0)),
    )
    if row is not None:
        raise ValidationError(
            "dataset already has a data request for this connection",
            {"dataset_id": int(dataset_id), "connection_id": int(connection_id)},
        )


async def list_data_requests(db: DbConnection, dataset_id: int) -> list[dict[str, Any]]:
    rows = await list_data_request_rows(db, dataset_id)
    if not rows:
        raise NotFoundError("dataRequest", f"dataset={dataset_id}")
    return [serialize_data_request(r) for r in rows]


async def create_data_request(
    db: DbConnection,
    *,
    dataset: dict[str, Any],
    team_id: int,
    values: dict[str, Any],
) -> dict[str, Any]:
    connection_id = values.get("connection_id", dataset.get("connection_id"))
    connection_id = await _check_connection(db, connection_id, team_id)
    await _check_connection_free(db, int(dataset["id"]), connection_id)

    now = utc_now_iso()
    cur = await db.execute(
        """
        INSERT INTO data_requests(
          dataset_id, connection_id, route, method, configuration_json, items_limit,
          response_json, response_updated_at, created_at, updated_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            int(dataset["id"]),
            connection_id,
            str(values.get("route") or "").strip(),
            str(values.get("method") or "GET").strip().upper(),
            json_dumps(values.get("configuration") or {}),
            int(values.get("itemsLimit") or 0),
            None,
            None,
            now,
            now,
        ),
    )
    data_request_id = int(cur.lastrowid)
    await db.commit()
    logger.info("created dataRequest=%s dataset=%s", data_request_id, dataset["id"])
    return serialize_data_request(await get_data_request_row(db, data_request_id))


async def update_data_request(
    db: DbConnection,
    *,
    existing: dict[str, Any],
    team_id: int,
    values: dict[str, Any],
) -> dict[str, Any]:
    """Apply a partial update; a changed query drops the cached response."""
    changes: dict[str, Any] = {}
    if "route" in values and values["route"] is not None:
        changes["route"] = str(values["route"]).strip()
    if "method" in values and values["method"] is not None:
        changes["method"] = str(values["method"]).strip().upper()
    if "configuration" in values and values["configuration"] is not None:
        changes["configuration_json"] = json_dumps(values["configuration"])
    if "itemsLimit" in values and values["itemsLimit"] is not None:
        changes["items_limit"] = int(values["itemsLimit"])
    if "connection_id" in values:
        changes["connection_id"] = await _check_connection(db, values["connection_id"], team_id)
        await _check_connection_free(
            db, int(existing["dataset_id"]), changes["connection_id"], exclude_id=int(existing["id"])
        )

    stale = any(
        field in changes and _differs(field, changes[field], existing.get(field)) for field in QUERY_FIELDS
    )
    if stale:
        changes["response_json"] = None
        changes["response_updated_at"] = None

    data_request_id = int(existing["id"])
    if changes:
        changes["updated_at"] = utc_now_iso()
        assignments = ", ".join(f"{column} = ?" for column in changes)
        await db.execute(
            f"UPDATE data_requests SET {assignments} WHERE id = ?",
            (*changes.values(), data_request_id),
        )
        await db.commit()
        if stale:
            logger.info("dataRequest=%s query changed, cached response cleared", data_request_id)

    return serialize_data_request(await get_data_request_row(db, data_request_id))


def _differs(field: str, new: Any, old: Any) -> bool:  # noqa: ANN401
    if field == "configuration_json":
        return json_loads(new, {}) != json_loads(old, {})
    if field in {"items_limit", "connection_id"}:
        return (int(new) if new is not None else None) != (int(old) if old is not None else None)
    return str(new or "") != str(old or "")


async def delete_data_request(db: DbConnection, data_request_id: int) -> None:
    cur = await db.execute("DELETE FROM data_requests WHERE id = ?", (int(data_request_id),))
    await db.commit()
    if cur.rowcount == 0:
        raise NotFoundError("dataRequest", data_request_id)
    logger.info("deleted dataRequest=%s", data_request_id)
