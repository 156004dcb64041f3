from __future__ import annotations


async def test_health_ok(client) -> None:  # noqa: ANN001
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json().get("ok") is True


async def test_login_then_me(client, world) -> None:  # noqa: ANN001
    login_resp = await client.post(
        "/api/auth/login",
        json={"email": "Owner-A@example.com", "password": "password123"},
    )
    assert login_resp.status_code == 200
    body = login_resp.json()
    token = body["access_token"]
    assert token
    assert body["teams"] == [{"id": world.team_a, "name": "Growth", "role": "teamOwner", "projects": []}]

    me_resp = await client.get("/api/me", headers={"Authorization": f"Bearer {token}"})
    assert me_resp.status_code == 200
    assert me_resp.json()["user"]["email"] == "owner-a@example.com"


async def test_login_with_wrong_password_is_rejected(client, world) -> None:  # noqa: ANN001
    resp = await client.post("/api/auth/login", json={"email": "owner-a@example.com", "password": "nope"})
    assert resp.status_code == 401
    assert resp.json() == {"error": "Invalid email or password"}


async def test_garbage_token_is_rejected(client) -> None:  # noqa: ANN001
    resp = await client.get("/api/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401
    assert resp.json() == {"error": "Not authorized"}
