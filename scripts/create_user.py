#!/usr/bin/env python3
"""Create or update a user and give them a role in a team.

The team is created when ``--team-name`` does not match an existing team.
Tables must already exist (start the API once, or run ``alembic upgrade head``).
"""
from __future__ import annotations

import argparse
import json
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

ROLES = ("teamOwner", "teamAdmin", "projectAdmin", "projectViewer", "teamMember", "teamViewer")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def hash_password(password: str) -> str:
    # Same scheme as backend/chartdata_api/services/auth_service.py
    from passlib.context import CryptContext

    ctx = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
    return ctx.hash(password)


_UPSERT_USER = """
INSERT INTO users(email, name, password_hash, created_at)
VALUES ({p}, {p}, {p}, {p})
ON CONFLICT(email) DO UPDATE SET
  name = excluded.name,
  password_hash = excluded.password_hash
"""

_UPSERT_MEMBERSHIP = """
INSERT INTO memberships(user_id, team_id, role, projects_json, created_at)
VALUES ({p}, {p}, {p}, {p}, {p})
ON CONFLICT(user_id, team_id) DO UPDATE SET
  role = excluded.role,
  projects_json = excluded.projects_json
"""


def upsert(conn, *, placeholder: str, email: str, name: str, password_hash: str,  # noqa: ANN001
           team_name: str, role: str, projects: list[int], now: str) -> tuple[int, int]:
    p = placeholder
    cur = conn.cursor()
    cur.execute(_UPSERT_USER.format(p=p).strip(), (email, name, password_hash, now))
    cur.execute(f"SELECT id FROM users WHERE email = {p}", (email,))
    user_id = int(cur.fetchone()[0])

    cur.execute(f"SELECT id FROM teams WHERE name = {p} ORDER BY id ASC LIMIT 1", (team_name,))
    row = cur.fetchone()
    if row:
        team_id = int(row[0])
    else:
        cur.execute(f"INSERT INTO teams(name, created_at) VALUES ({p}, {p})", (team_name, now))
        cur.execute(f"SELECT id FROM teams WHERE name = {p} ORDER BY id DESC LIMIT 1", (team_name,))
        team_id = int(cur.fetchone()[0])

    cur.execute(
        _UPSERT_MEMBERSHIP.format(p=p).strip(),
        (user_id, team_id, role, json.dumps(projects), now),
    )
    conn.commit()
    return user_id, team_id


def main() -> None:
    parser = argparse.ArgumentParser(description="Create or update a chartdata user and team membership")
    parser.add_argument("--email", required=True)
    parser.add_argument("--name", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument("--team-name", required=True)
    parser.add_argument("--role", default="teamOwner", choices=ROLES)
    parser.add_argument("--project", type=int, action="append", default=[], help="accessible project id (repeatable)")
    args = parser.parse_args()

    email = str(args.email).strip().lower()
    name = str(args.name).strip()
    team_name = str(args.team_name).strip()
    if "@" not in email:
        raise SystemExit("--email must be a valid email (login is email-based)")
    if not name:
        raise SystemExit("empty --name")
    if not team_name:
        raise SystemExit("empty --team-name")
    if not args.password:
        raise SystemExit("empty --password")

    fields = dict(
        email=email,
        name=name,
        password_hash=hash_password(str(args.password)),
        team_name=team_name,
        role=args.role,
        projects=list(args.project),
        now=utc_now_iso(),
    )

    db_url = (os.getenv("CHARTDATA_DB_URL") or "").strip()
    if db_url.lower().startswith("postgres"):
        import psycopg

        with psycopg.connect(db_url) as conn:
            user_id, team_id = upsert(conn, placeholder="%s", **fields)
        print(f"ok (postgres): user={user_id} team={team_id} role={args.role}")
        return

    repo_root = Path(__file__).resolve().parents[1]
    default_db_path = repo_root / ".chartdata" / "chartdata.db"
    db_path = Path(os.getenv("CHARTDATA_DB_PATH") or str(default_db_path)).expanduser().resolve()
    if not db_path.exists():
        raise SystemExit(f"sqlite db not found: {db_path}")
    conn = sqlite3.connect(str(db_path))
    try:
        user_id, team_id = upsert(conn, placeholder="?", **fields)
    finally:
        conn.close()
    print(f"ok (sqlite): user={user_id} team={team_id} role={args.role}")


if __name__ == "__main__":
    main()
