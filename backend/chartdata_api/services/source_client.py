from __future__ import annotations

import json
import logging
from typing import Any, Callable, Mapping, Protocol

import httpx

from ..config import Settings
from ..errors import UpstreamError


logger = logging.getLogger(__name__)

_BODY_PREVIEW_CHARS = 2000


class SourceClient(Protocol):
    async def send(
        self,
        *,
        route: str,
        method: str,
        configuration: Mapping[str, Any],
        items_limit: int = 0,
    ) -> Any: ...  # noqa: ANN401


SourceClientFactory = Callable[[Mapping[str, Any]], SourceClient]


def _query_params(configuration: Mapping[str, Any], items_limit: int) -> dict[str, Any]:
    params: dict[str, Any] = {}
    for key, value in configuration.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            params[key] = value
        elif isinstance(value, list) and all(isinstance(v, (str, int, float)) for v in value):
            params[key] = value
        else:
            params[key] = json.dumps(value, separators=(",", ":"))
    if items_limit > 0:
        params["limit"] = items_limit
    return params


def _error_body(res: httpx.Response) -> Any:  # noqa: ANN401
    try:
        return res.json()
    except ValueError:
        return res.text[:_BODY_PREVIEW_CHARS]


class HttpSourceClient:
    """Forwards a saved request to a JSON HTTP API with bearer authentication."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None,
        timeout_seconds: int = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = (api_key or "").strip()
        self._timeout = httpx.Timeout(max(1, int(timeout_seconds)))
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def send(
        self,
        *,
        route: str,
        method: str,
        configuration: Mapping[str, Any],
        items_limit: int = 0,
    ) -> Any:  # noqa: ANN401
        verb = (method or "GET").strip().upper()
        path = "/" + (route or "").strip().lstrip("/")

        kwargs: dict[str, Any] = {}
        if verb == "GET":
            kwargs["params"] = _query_params(configuration, items_limit)
        else:
            kwargs["json"] = dict(configuration)
            if items_limit > 0:
                kwargs["params"] = {"limit": items_limit}

        logger.debug("source request %s %s%s", verb, self._base_url, path)
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                headers=self._headers(),
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                res = await client.request(verb, path, **kwargs)
        except httpx.TimeoutException as e:
            raise UpstreamError(f"source timed out on {verb} {path}") from e
        except httpx.RequestError as e:
            raise UpstreamError(f"source unreachable on {verb} {path}: {e}") from e

        if res.status_code >= 400:
            raise UpstreamError(
                f"source answered HTTP {res.status_code} on {verb} {path}",
                status_code=res.status_code,
                body=_error_body(res),
            )

        try:
            return res.json()
        except ValueError as e:
            raise UpstreamError(
                f"source returned a non-JSON body on {verb} {path}",
                status_code=res.status_code,
                body=res.text[:_BODY_PREVIEW_CHARS],
            ) from e


def make_source_client_factory(
    settings: Settings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> SourceClientFactory:
    def factory(connection: Mapping[str, Any]) -> SourceClient:
        kind = str(connection.get("type") or "").strip().lower()
        host = str(connection.get("host") or "").strip()
        if kind == "customerio":
            base_url = host or settings.customerio_base_url
        elif kind == "api":
            if not host:
                raise UpstreamError(f"connection {connection.get('id')} has no host")
            base_url = host
        else:
            raise UpstreamError(f"unsupported connection type: {kind or '<empty>'}")
        return HttpSourceClient(
            base_url=base_url,
            api_key=connection.get("api_key"),
            timeout_seconds=settings.source_timeout_seconds,
            transport=transport,
        )

    return factory
