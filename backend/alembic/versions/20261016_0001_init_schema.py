"""init schema (postgres)

Revision ID: 20261016_0001
Revises:
Create Date: 2026-10-16
"""

from __future__ import annotations

from alembic import op


revision = "20261016_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    if op.get_bind().dialect.name != "postgresql":
        return

    statements = [
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
    ]

    for stmt in statements:
        op.execute(stmt)


def downgrade() -> None:
    if op.get_bind().dialect.name != "postgresql":
        return

    for stmt in [
        "DROP TABLE IF EXISTS data_requests",
        "DROP TABLE IF EXISTS datasets",
        "DROP TABLE IF EXISTS charts",
        "DROP TABLE IF EXISTS connections",
        "DROP TABLE IF EXISTS projects",
        "DROP TABLE IF EXISTS memberships",
        "DROP TABLE IF EXISTS teams",
        "DROP TABLE IF EXISTS users",
        "DROP TABLE IF EXISTS meta",
    ]:
        op.execute(stmt)
