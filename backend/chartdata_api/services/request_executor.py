from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any

from ..db import DbConnection, json_dumps, json_loads
from ..errors import NotFoundError, UpstreamError
from ..time_utils import utc_now_iso
from .entity_store import get_connection, get_data_request_row, get_dataset, serialize_data_request
from .source_client import SourceClientFactory


logger = logging.getLogger(__name__)

RESPONSE_ITEMS_CAP = 20

SOURCE_CACHE = "cache"
SOURCE_PERSISTED = "persisted"
SOURCE_UPSTREAM = "upstream"


def truncate_payload(data: Any, cap: int = RESPONSE_ITEMS_CAP) -> Any:  # noqa: ANN401
    """Cap a result payload for the wire.

    Lists keep their first ``cap`` items. For mappings, every list-valued key
    is capped the same way and scalar keys are left alone. Anything else is
    returned as is. The input is never modified.
    """
    if isinstance(data, list):
        return data[:cap]
    if isinstance(data, dict):
        return {key: value[:cap] if isinstance(value, list) else value for key, value in data.items()}
    return data


def truncate_response_data(response_data: Any, cap: int = RESPONSE_ITEMS_CAP) -> Any:  # noqa: ANN401
    if not isinstance(response_data, dict) or "data" not in response_data:
        return response_data
    out = dict(response_data)
    out["data"] = truncate_payload(response_data["data"], cap)
    return out


@dataclass(frozen=True)
class ExecutionResult:
    data_request: dict[str, Any]
    response_data: Any
    source: str

    def to_wire(self, cap: int = RESPONSE_ITEMS_CAP) -> dict[str, Any]:
        data_request = copy.deepcopy(self.data_request)
        data_request["responseData"] = truncate_response_data(self.response_data, cap)
        return {"dataRequest": data_request, "source": self.source}


class RequestExecutor:
    def __init__(self, db: DbConnection, client_factory: SourceClientFactory) -> None:
        self._db = db
        self._client_factory = client_factory

    async def execute(
        self,
        data_request_id: int,
        chart_id: int,
        *,
        no_source: bool = False,
        use_cache: bool = False,
    ) -> ExecutionResult:
        row = await get_data_request_row(self._db, data_request_id)
        dataset = await get_dataset(self._db, int(row["dataset_id"]))
        if int(dataset["chart_id"]) != int(chart_id):
            raise NotFoundError("dataRequest", data_request_id)

        persisted = json_loads(row.get("response_json"), None)

        if no_source:
            return ExecutionResult(serialize_data_request(row), persisted, SOURCE_PERSISTED)

        if use_cache and persisted is not None:
            logger.debug("serving cached response for dataRequest=%s", data_request_id)
            return ExecutionResult(serialize_data_request(row), persisted, SOURCE_CACHE)

        connection_id = row.get("connection_id") or dataset.get("connection_id")
        if connection_id is None:
            raise UpstreamError(f"dataRequest {data_request_id} has no connection")
        connection = await get_connection(self._db, int(connection_id))
        client = self._client_factory(connection)

        route = str(row.get("route") or "")
        method = str(row.get("method") or "GET")
        try:
            payload = await client.send(
                route=route,
                method=method,
                configuration=json_loads(row.get("configuration_json"), {}) or {},
                items_limit=int(row.get("items_limit") or 0),
            )
        except UpstreamError as e:
            logger.warning(
                "source request failed dataRequest=%s %s %s status=%s: %s",
                data_request_id,
                method,
                route,
                e.status_code,
                e.message,
            )
            raise

        response_data = {"data": payload}
        await self._db.execute(
            "UPDATE data_requests SET response_json = ?, response_updated_at = ? WHERE id = ?",
            (json_dumps(response_data), utc_now_iso(), int(data_request_id)),
        )
        await self._db.commit()

        row = await get_data_request_row(self._db, data_request_id)
        return ExecutionResult(serialize_data_request(row), response_data, SOURCE_UPSTREAM)
