from __future__ import annotations

import json

import httpx
import pytest

from chartdata_api.db import fetchone, row_to_dict
from chartdata_api.errors import NotFoundError, UpstreamError
from chartdata_api.services.request_executor import RequestExecutor
from chartdata_api.services.source_client import make_source_client_factory


def _exploding_factory(connection):  # noqa: ANN001, ANN202
    raise AssertionError("the source must not be contacted")


async def _stored_response(db, data_request_id: int):  # noqa: ANN001, ANN202
    row = row_to_dict(await fetchone(db, "SELECT response_json FROM data_requests WHERE id = ?", (data_request_id,)))
    raw = (row or {}).get("response_json")
    return json.loads(raw) if raw else None


async def test_cached_response_skips_the_source(db, world) -> None:  # noqa: ANN001
    cached = {"data": [{"id": 1}]}
    request_id = await world.seeder.data_request(world.dataset_a, response=cached)
    executor = RequestExecutor(db, _exploding_factory)

    result = await executor.execute(request_id, world.chart_a, use_cache=True)

    assert result.source == "cache"
    assert result.response_data == cached


async def test_no_source_returns_last_result_or_nothing(db, world) -> None:  # noqa: ANN001
    stored = {"data": list(range(30))}
    request_id = await world.seeder.data_request(world.dataset_a, response=stored)
    executor = RequestExecutor(db, _exploding_factory)

    result = await executor.execute(request_id, world.chart_a, no_source=True)
    assert result.source == "persisted"
    assert result.response_data == stored

    empty = await executor.execute(world.data_request_a, world.chart_a, no_source=True)
    assert empty.response_data is None


async def test_source_result_is_persisted_in_full(db, world, settings, upstream) -> None:  # noqa: ANN001
    factory = make_source_client_factory(settings, transport=httpx.MockTransport(upstream.handler))
    executor = RequestExecutor(db, factory)

    result = await executor.execute(world.data_request_a, world.chart_a, use_cache=True)

    assert result.source == "upstream"
    assert len(result.response_data["data"]) == 50
    assert result.data_request["responseUpdatedAt"]
    stored = await _stored_response(db, world.data_request_a)
    assert stored is not None and len(stored["data"]) == 50

    sent = upstream.calls[0]
    assert sent.method == "POST"
    assert sent.url.path == "/v1/customers"
    assert sent.headers["Authorization"] == "Bearer cio-app-key"


async def test_get_requests_send_configuration_as_query(db, world, settings, upstream) -> None:  # noqa: ANN001
    upstream.payload = {"campaigns": [{"id": 1}], "count": 1}
    request_id = await world.seeder.data_request(
        world.dataset_a,
        route="campaigns",
        method="GET",
        configuration={"state": "running"},
        items_limit=5,
    )
    factory = make_source_client_factory(settings, transport=httpx.MockTransport(upstream.handler))

    result = await RequestExecutor(db, factory).execute(request_id, world.chart_a)

    assert result.response_data == {"data": {"campaigns": [{"id": 1}], "count": 1}}
    sent = upstream.calls[0]
    assert sent.url.params["state"] == "running"
    assert sent.url.params["limit"] == "5"


async def test_source_failure_propagates_and_keeps_old_result(db, world, settings, upstream) -> None:  # noqa: ANN001
    previous = {"data": [1, 2, 3]}
    request_id = await world.seeder.data_request(world.dataset_a, response=previous)
    upstream.status_code = 401
    upstream.payload = {"meta": {"error": "Unauthorized request"}}
    factory = make_source_client_factory(settings, transport=httpx.MockTransport(upstream.handler))

    with pytest.raises(UpstreamError) as excinfo:
        await RequestExecutor(db, factory).execute(request_id, world.chart_a)

    assert excinfo.value.status_code == 401
    assert excinfo.value.body == {"meta": {"error": "Unauthorized request"}}
    assert await _stored_response(db, request_id) == previous
    assert len(upstream.calls) == 1


async def test_unreachable_source_is_an_upstream_failure(db, world, settings) -> None:  # noqa: ANN001
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    factory = make_source_client_factory(settings, transport=httpx.MockTransport(refuse))
    with pytest.raises(UpstreamError):
        await RequestExecutor(db, factory).execute(world.data_request_a, world.chart_a)


async def test_request_without_connection_fails_upstream(db, world) -> None:  # noqa: ANN001
    bare_dataset = await world.seeder.dataset(world.chart_a)
    request_id = await world.seeder.data_request(bare_dataset)
    with pytest.raises(UpstreamError):
        await RequestExecutor(db, _exploding_factory).execute(request_id, world.chart_a)


async def test_wrong_chart_is_not_found(db, world) -> None:  # noqa: ANN001
    with pytest.raises(NotFoundError):
        await RequestExecutor(db, _exploding_factory).execute(world.data_request_a, world.chart_b)
