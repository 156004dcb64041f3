from __future__ import annotations

import json
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable

import aiosqlite

try:
    import asyncpg  # type: ignore
except ImportError:  # pragma: no cover - optional dependency
    asyncpg = None

from .config import Settings


SCHEMA_VERSION = 2
_ID_RETURNING_TABLES = {
    "users",
    "teams",
    "projects",
    "connections",
    "charts",
    "datasets",
    "data_requests",
}

_INSERT_RE = re.compile(r"^\s*INSERT\s+INTO\s+([a-zA-Z_][a-zA-Z0-9_]*)", re.I)

class DbCursor:
    rowcount: int = 0
    lastrowid: int | None = None

    async def fetchone(self) -> Any | None:  # noqa: ANN401
        raise NotImplementedError

    async def fetchall(self) -> list[Any]:  # noqa: ANN401
        raise NotImplementedError

    async def close(self) -> None:
        return None


class SqliteCursor(DbCursor):
    def __init__(self, cursor: aiosqlite.Cursor):
        self._cursor = cursor

    @property
    def rowcount(self) -> int:
        return int(getattr(self._cursor, "rowcount", 0) or 0)

    @property
    def lastrowid(self) -> int | None:
        value = getattr(self._cursor, "lastrowid", None)
        return int(value) if value is not None else None

    async def fetchone(self) -> aiosqlite.Row | None:
        return await self._cursor.fetchone()

    async def fetchall(self) -> list[aiosqlite.Row]:
        return list(await self._cursor.fetchall())

    async def close(self) -> None:
        await self._cursor.close()


class PgCursor(DbCursor):
    def __init__(self, rows: Iterable[Any] | None, *, rowcount: int = 0, lastrowid: int | None = None) -> None:
        self._rows = list(rows or [])
        self._index = 0
        self._rowcount = int(rowcount)
        self._lastrowid = lastrowid

    @property
    def rowcount(self) -> int:
        return self._rowcount

    @property
    def lastrowid(self) -> int | None:
        return self._lastrowid

    async def fetchone(self) -> Any | None:  # noqa: ANN401
        if self._index >= len(self._rows):
            return None
        row = self._rows[self._index]
        self._index += 1
        return row

    async def fetchall(self) -> list[Any]:  # noqa: ANN401
        out = self._rows[self._index :]
        self._index = len(self._rows)
        return list(out)


class DbConnection:
    kind: str = "sqlite"

    async def execute(self, sql: str, params: tuple | list | None = None) -> DbCursor:
        raise NotImplementedError

    async def commit(self) -> None:
        raise NotImplementedError

    async def rollback(self) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError


def _translate_placeholders(sql: str) -> str:
    out: list[str] = []
    idx = 1
    in_single = False
    in_double = False
    i = 0
    while i < len(sql):
        ch = sql[i]
        if ch == "'" and not in_double:
            if in_single and i + 1 < len(sql) and sql[i + 1] == "'":
                out.append("''")
                i += 2
                continue
            in_single = not in_single
            out.append(ch)
            i += 1
            continue
        if ch == '"' and not in_single:
            in_double = not in_double
            out.append(ch)
            i += 1
            continue
        if ch == "?" and not in_single and not in_double:
            out.append(f"${idx}")
            idx += 1
            i += 1
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def _should_return_id(sql: str) -> bool:
    m = _INSERT_RE.match(sql)
    if not m:
        return False
    if m.group(1).lower() not in _ID_RETURNING_TABLES:
        return False
    return "returning" not in sql.lower()


def _returns_rows(sql: str) -> bool:
    lowered = sql.lstrip().lower()
    return lowered.startswith("select") or lowered.startswith("with") or "returning" in lowered


def _parse_rowcount(status: str) -> int:
    # asyncpg status strings look like "UPDATE 3" or "INSERT 0 1"
    for token in reversed((status or "").split()):
        if token.isdigit():
            return int(token)
    return 0


class SqliteConnection(DbConnection):
    kind = "sqlite"

    def __init__(self, conn: aiosqlite.Connection):
        self._conn = conn

    async def execute(self, sql: str, params: tuple | list | None = None) -> DbCursor:
        cur = await self._conn.execute(sql, params or ())
        return SqliteCursor(cur)

    async def executescript(self, script: str) -> None:
        await self._conn.executescript(script)

    async def commit(self) -> None:
        await self._conn.commit()

    async def rollback(self) -> None:
        await self._conn.rollback()

    async def close(self) -> None:
        await self._conn.close()


class PostgresConnection(DbConnection):
    kind = "postgres"

    def __init__(self, conn: Any):  # noqa: ANN401
        self._conn = conn

    async def execute(self, sql: str, params: tuple | list | None = None) -> DbCursor:
        raw = (sql or "").strip()
        if not raw:
            return PgCursor([])

        if _should_return_id(raw):
            raw = f"{raw} RETURNING id"
        sql = _translate_placeholders(raw)

        params_list = list(params or [])
        if _returns_rows(sql):
            rows = await self._conn.fetch(sql, *params_list)
            lastrowid = None
            if "returning id" in sql.lower() and rows:
                lastrowid = int(rows[0]["id"])
            return PgCursor(rows, rowcount=len(rows), lastrowid=lastrowid)

        status = await self._conn.execute(sql, *params_list)
        return PgCursor([], rowcount=_parse_rowcount(str(status)))

    async def commit(self) -> None:
        # asyncpg runs in autocommit mode outside explicit transactions.
        return None

    async def rollback(self) -> None:
        return None

    async def close(self) -> None:
        await self._conn.close()


async def fetchone(db: DbConnection, sql: str, params: tuple | list | None = None) -> Any | None:  # noqa: ANN401
    cur = await db.execute(sql, params or ())
    try:
        return await cur.fetchone()
    finally:
        await cur.close()


async def fetchall(db: DbConnection, sql: str, params: tuple | list | None = None) -> list[Any]:  # noqa: ANN401
    cur = await db.execute(sql, params or ())
    try:
        return list(await cur.fetchall())
    finally:
        await cur.close()


@asynccontextmanager
async def open_db(settings: Settings) -> AsyncIterator[DbConnection]:
    if settings.db_url and str(settings.db_url).lower().startswith("postgres"):
        if asyncpg is None:
            raise RuntimeError("PostgreSQL support is not installed, install the 'postgres' extra (asyncpg)")
        conn = await asyncpg.connect(str(settings.db_url))
        db = PostgresConnection(conn)
        try:
            yield db
        finally:
            await db.close()
        return

    db_path = settings.db_path
    db_path.parent.mkdir(parents=True, exist_ok=True)
    raw = await aiosqlite.connect(db_path)
    raw.row_factory = aiosqlite.Row
    await raw.execute("PRAGMA foreign_keys = ON")
    db = SqliteConnection(raw)
    try:
        yield db
    finally:
        await db.close()


_PG_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS meta (
      key TEXT PRIMARY KEY,
      value TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS users (
      id BIGSERIAL PRIMARY KEY,
      email TEXT NOT NULL UNIQUE,
      name TEXT NOT NULL,
      password_hash TEXT NOT NULL,
      created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS teams (
      id BIGSERIAL PRIMARY KEY,
      name TEXT NOT NULL,
      created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS memberships (
      user_id BIGINT NOT NULL,
      team_id BIGINT NOT NULL,
      role TEXT NOT NULL,
      projects_json TEXT NOT NULL DEFAULT '[]',
      created_at TEXT NOT NULL,
      PRIMARY KEY (user_id, team_id),
      FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
      FOREIGN KEY (team_id) REFERENCES teams(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS projects (
      id BIGSERIAL PRIMARY KEY,
      team_id BIGINT NOT NULL,
      name TEXT NOT NULL,
      created_at TEXT NOT NULL,
      updated_at TEXT NOT NULL,
      FOREIGN KEY (team_id) REFERENCES teams(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS connections (
      id BIGSERIAL PRIMARY KEY,
      team_id BIGINT NOT NULL,
      type TEXT NOT NULL,
      name TEXT NOT NULL DEFAULT '',
      host TEXT NOT NULL DEFAULT '',
      api_key TEXT NOT NULL DEFAULT '',
      created_at TEXT NOT NULL,
      updated_at TEXT NOT NULL,
      FOREIGN KEY (team_id) REFERENCES teams(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS charts (
      id BIGSERIAL PRIMARY KEY,
      project_id BIGINT NOT NULL,
      name TEXT NOT NULL,
      created_at TEXT NOT NULL,
      updated_at TEXT NOT NULL,
      FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS datasets (
      id BIGSERIAL PRIMARY KEY,
      chart_id BIGINT NOT NULL,
      connection_id BIGINT NULL,
      legend TEXT NOT NULL DEFAULT '',
      created_at TEXT NOT NULL,
      updated_at TEXT NOT NULL,
      FOREIGN KEY (chart_id) REFERENCES charts(id) ON DELETE CASCADE,
      FOREIGN KEY (connection_id) REFERENCES connections(id) ON DELETE SET NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS data_requests (
      id BIGSERIAL PRIMARY KEY,
      dataset_id BIGINT NOT NULL,
      connection_id BIGINT NULL,
      route TEXT NOT NULL DEFAULT '',
      method TEXT NOT NULL DEFAULT 'GET',
      configuration_json TEXT NOT NULL DEFAULT '{}',
      items_limit INTEGER NOT NULL DEFAULT 0,
      response_json TEXT NULL,
      response_updated_at TEXT NULL,
      created_at TEXT NOT NULL,
      updated_at TEXT NOT NULL,
      FOREIGN KEY (dataset_id) REFERENCES datasets(id) ON DELETE CASCADE,
      FOREIGN KEY (connection_id) REFERENCES connections(id) ON DELETE SET NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_memberships_team_id ON memberships(team_id)",
    "CREATE INDEX IF NOT EXISTS idx_projects_team_id ON projects(team_id)",
    "CREATE INDEX IF NOT EXISTS idx_connections_team_id ON connections(team_id)",
    "CREATE INDEX IF NOT EXISTS idx_charts_project_id ON charts(project_id)",
    "CREATE INDEX IF NOT EXISTS idx_datasets_chart_id ON datasets(chart_id)",
    "CREATE INDEX IF NOT EXISTS idx_data_requests_dataset_id ON data_requests(dataset_id)",
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_data_requests_dataset_connection ON data_requests(dataset_id, connection_id)",
]


_SQLITE_SCHEMA = """
CREATE TABLE IF NOT EXISTS meta (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS users (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  email TEXT NOT NULL UNIQUE,
  name TEXT NOT NULL,
  password_hash TEXT NOT NULL,
  created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS teams (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL,
  created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS memberships (
  user_id INTEGER NOT NULL,
  team_id INTEGER NOT NULL,
  role TEXT NOT NULL,
  projects_json TEXT NOT NULL DEFAULT '[]',
  created_at TEXT NOT NULL,
  PRIMARY KEY (user_id, team_id),
  FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
  FOREIGN KEY (team_id) REFERENCES teams(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS projects (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  team_id INTEGER NOT NULL,
  name TEXT NOT NULL,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  FOREIGN KEY (team_id) REFERENCES teams(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS connections (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  team_id INTEGER NOT NULL,
  type TEXT NOT NULL,
  name TEXT NOT NULL DEFAULT '',
  host TEXT NOT NULL DEFAULT '',
  api_key TEXT NOT NULL DEFAULT '',
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  FOREIGN KEY (team_id) REFERENCES teams(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS charts (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  project_id INTEGER NOT NULL,
  name TEXT NOT NULL,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS datasets (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  chart_id INTEGER NOT NULL,
  connection_id INTEGER NULL,
  legend TEXT NOT NULL DEFAULT '',
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  FOREIGN KEY (chart_id) REFERENCES charts(id) ON DELETE CASCADE,
  FOREIGN KEY (connection_id) REFERENCES connections(id) ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS data_requests (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  dataset_id INTEGER NOT NULL,
  connection_id INTEGER NULL,
  route TEXT NOT NULL DEFAULT '',
  method TEXT NOT NULL DEFAULT 'GET',
  configuration_json TEXT NOT NULL DEFAULT '{}',
  items_limit INTEGER NOT NULL DEFAULT 0,
  response_json TEXT NULL,
  response_updated_at TEXT NULL,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  FOREIGN KEY (dataset_id) REFERENCES datasets(id) ON DELETE CASCADE,
  FOREIGN KEY (connection_id) REFERENCES connections(id) ON DELETE SET NULL
);

CREATE INDEX IF NOT EXISTS idx_memberships_team_id ON memberships(team_id);
CREATE INDEX IF NOT EXISTS idx_projects_team_id ON projects(team_id);
CREATE INDEX IF NOT EXISTS idx_connections_team_id ON connections(team_id);
CREATE INDEX IF NOT EXISTS idx_charts_project_id ON charts(project_id);
CREATE INDEX IF NOT EXISTS idx_datasets_chart_id ON datasets(chart_id);
CREATE INDEX IF NOT EXISTS idx_data_requests_dataset_id ON data_requests(dataset_id);
CREATE UNIQUE INDEX IF NOT EXISTS uq_data_requests_dataset_connection ON data_requests(dataset_id, connection_id);
"""


async def init_db(settings: Settings) -> None:
    async with open_db(settings) as db:
        if isinstance(db, SqliteConnection):
            await db.executescript(_SQLITE_SCHEMA)
        else:
            for stmt in _PG_SCHEMA:
                await db.execute(stmt)

        row = await fetchone(db, "SELECT value FROM meta WHERE key = ?", ("schema_version",))
        if row is None:
            await db.execute("INSERT INTO meta(key, value) VALUES (?, ?)", ("schema_version", str(SCHEMA_VERSION)))
        elif int(row_to_dict(row)["value"] or 0) < SCHEMA_VERSION:
            await db.execute("UPDATE meta SET value = ? WHERE key = ?", (str(SCHEMA_VERSION), "schema_version"))
        await db.commit()


def row_to_dict(row: Any | None) -> dict[str, Any] | None:  # noqa: ANN401
    if row is None:
        return None
    if isinstance(row, dict):
        return dict(row)
    keys = getattr(row, "keys", None)
    if callable(keys):
        return {k: row[k] for k in row.keys()}
    return dict(row)


def rows_to_dicts(rows: list[Any]) -> list[dict[str, Any]]:  # noqa: ANN401
    out: list[dict[str, Any]] = []
    for r in rows:
        item = row_to_dict(r)
        if item is not None:
            out.append(item)
    return out


def json_dumps(value: Any) -> str:  # noqa: ANN401
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def json_loads(raw: str | None, default: Any = None) -> Any:  # noqa: ANN401
    if raw is None or raw == "":
        return default
    return json.loads(raw)
