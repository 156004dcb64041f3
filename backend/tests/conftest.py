from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator

import httpx
import pytest

from chartdata_api.app_factory import create_app
from chartdata_api.config import Settings, load_settings
from chartdata_api.db import DbConnection, init_db, json_dumps, open_db
from chartdata_api.deps import get_source_client_factory
from chartdata_api.services.auth_service import create_access_token, hash_password
from chartdata_api.services.source_client import make_source_client_factory
from chartdata_api.time_utils import utc_now_iso


UPSTREAM_HOST = "https://cio.test/v1"


@pytest.fixture
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Settings:
    monkeypatch.delenv("CHARTDATA_DB_URL", raising=False)
    monkeypatch.delenv("CHARTDATA_PERMISSIONS_FILE", raising=False)
    monkeypatch.setenv("CHARTDATA_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("CHARTDATA_DB_PATH", str(tmp_path / "data" / "test.db"))
    monkeypatch.setenv("CHARTDATA_JWT_SECRET", "test-jwt-secret-0123456789abcdef0123456789abcdef")
    return load_settings()


@pytest.fixture
async def db(settings: Settings) -> AsyncIterator[DbConnection]:
    await init_db(settings)
    async with open_db(settings) as conn:
        yield conn


class Seeder:
    def __init__(self, db: DbConnection) -> None:
        self.db = db

    async def _insert(self, sql: str, params: tuple) -> int:
        cur = await self.db.execute(sql, params)
        await self.db.commit()
        return int(cur.lastrowid)

    async def user(self, email: str, *, name: str = "User", password: str = "password123") -> int:
        return await self._insert(
            "INSERT INTO users(email, name, password_hash, created_at) VALUES (?, ?, ?, ?)",
            (email, name, hash_password(password), utc_now_iso()),
        )

    async def team(self, name: str) -> int:
        return await self._insert("INSERT INTO teams(name, created_at) VALUES (?, ?)", (name, utc_now_iso()))

    async def member(self, user_id: int, team_id: int, role: str, projects: tuple[int, ...] = ()) -> None:
        await self.db.execute(
            "INSERT INTO memberships(user_id, team_id, role, projects_json, created_at) VALUES (?, ?, ?, ?, ?)",
            (user_id, team_id, role, json.dumps(list(projects)), utc_now_iso()),
        )
        await self.db.commit()

    async def project(self, team_id: int, name: str = "Project") -> int:
        now = utc_now_iso()
        return await self._insert(
            "INSERT INTO projects(team_id, name, created_at, updated_at) VALUES (?, ?, ?, ?)",
            (team_id, name, now, now),
        )

    async def chart(self, project_id: int, name: str = "Chart") -> int:
        now = utc_now_iso()
        return await self._insert(
            "INSERT INTO charts(project_id, name, created_at, updated_at) VALUES (?, ?, ?, ?)",
            (project_id, name, now, now),
        )

    async def connection(self, team_id: int, *, type: str = "customerio", host: str = UPSTREAM_HOST) -> int:
        now = utc_now_iso()
        return await self._insert(
            """
            INSERT INTO connections(team_id, type, name, host, api_key, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (team_id, type, "Customer.io", host, "cio-app-key", now, now),
        )

    async def dataset(self, chart_id: int, connection_id: int | None = None) -> int:
        now = utc_now_iso()
        return await self._insert(
            "INSERT INTO datasets(chart_id, connection_id, legend, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
            (chart_id, connection_id, "Dataset", now, now),
        )

    async def data_request(
        self,
        dataset_id: int,
        *,
        route: str = "customers",
        method: str = "POST",
        configuration: dict | None = None,
        items_limit: int = 0,
        response: Any = None,  # noqa: ANN401
        connection_id: int | None = None,
    ) -> int:
        now = utc_now_iso()
        return await self._insert(
            """
            INSERT INTO data_requests(
              dataset_id, connection_id, route, method, configuration_json, items_limit,
              response_json, response_updated_at, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                dataset_id,
                connection_id,
                route,
                method,
                json_dumps(configuration or {}),
                items_limit,
                json_dumps(response) if response is not None else None,
                now if response is not None else None,
                now,
                now,
            ),
        )


@dataclass
class World:
    """Two teams, each with one project -> chart -> dataset -> data request."""

    team_a: int
    owner_a: int
    project_a: int
    chart_a: int
    connection_a: int
    dataset_a: int
    data_request_a: int

    team_b: int
    owner_b: int
    project_b: int
    chart_b: int
    dataset_b: int
    data_request_b: int

    seeder: Seeder
    emails: dict[int, str] = field(default_factory=dict)

    def path_a(self, suffix: str = "") -> str:
        return (
            f"/api/team/{self.team_a}/project/{self.project_a}/chart/{self.chart_a}"
            f"/datasets/{self.dataset_a}/dataRequests{suffix}"
        )

    def path_b(self, suffix: str = "") -> str:
        return (
            f"/api/team/{self.team_b}/project/{self.project_b}/chart/{self.chart_b}"
            f"/datasets/{self.dataset_b}/dataRequests{suffix}"
        )


@pytest.fixture
async def seeder(db: DbConnection) -> Seeder:
    return Seeder(db)


@pytest.fixture
async def world(seeder: Seeder) -> World:
    team_a = await seeder.team("Growth")
    owner_a = await seeder.user("owner-a@example.com", name="Owner A")
    await seeder.member(owner_a, team_a, "teamOwner")
    project_a = await seeder.project(team_a, "Lifecycle")
    chart_a = await seeder.chart(project_a, "Active customers")
    connection_a = await seeder.connection(team_a)
    dataset_a = await seeder.dataset(chart_a, connection_a)
    data_request_a = await seeder.data_request(dataset_a)

    team_b = await seeder.team("Support")
    owner_b = await seeder.user("owner-b@example.com", name="Owner B")
    await seeder.member(owner_b, team_b, "teamOwner")
    project_b = await seeder.project(team_b, "Tickets")
    chart_b = await seeder.chart(project_b, "Campaigns")
    connection_b = await seeder.connection(team_b)
    dataset_b = await seeder.dataset(chart_b, connection_b)
    data_request_b = await seeder.data_request(dataset_b, route="campaigns", method="GET")

    return World(
        team_a=team_a,
        owner_a=owner_a,
        project_a=project_a,
        chart_a=chart_a,
        connection_a=connection_a,
        dataset_a=dataset_a,
        data_request_a=data_request_a,
        team_b=team_b,
        owner_b=owner_b,
        project_b=project_b,
        chart_b=chart_b,
        dataset_b=dataset_b,
        data_request_b=data_request_b,
        seeder=seeder,
        emails={owner_a: "owner-a@example.com", owner_b: "owner-b@example.com"},
    )


@dataclass
class FakeUpstream:
    status_code: int = 200
    payload: Any = None  # noqa: ANN401
    calls: list[httpx.Request] = field(default_factory=list)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        return httpx.Response(self.status_code, json=self.payload)


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream(payload=[{"id": i, "email": f"customer{i}@example.com"} for i in range(50)])


@pytest.fixture
async def app(settings: Settings, db: DbConnection, upstream: FakeUpstream):  # noqa: ANN201
    application = create_app(settings)
    transport = httpx.MockTransport(upstream.handler)
    application.dependency_overrides[get_source_client_factory] = lambda: make_source_client_factory(
        settings, transport=transport
    )
    return application


@pytest.fixture
async def client(app) -> AsyncIterator[httpx.AsyncClient]:  # noqa: ANN001
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def auth_headers(settings: Settings):  # noqa: ANN201
    def build(user_id: int, email: str = "user@example.com") -> dict[str, str]:
        token = create_access_token(settings=settings, user_id=user_id, email=email)
        return {"Authorization": f"Bearer {token}"}

    return build
