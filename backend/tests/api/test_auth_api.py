def register(client, **overrides):
    payload = {
        "email": "New.User@Example.com",
        "password": "Sup3rStrong",
        "first_name": "New",
        "last_name": "User",
    }
    payload.update(overrides)
    return client.post("/api/auth/register", json=payload)


def test_register_login_and_me(client):
    response = register(client)
    assert response.status_code == 201
    body = response.json()
    assert body["user"]["email"] == "new.user@example.com"
    assert "password_hash" not in body["user"]
    assert "accessToken" in response.cookies

    response = client.post("/api/auth/login", json={"email": "new.user@example.com", "password": "Sup3rStrong"})
    assert response.status_code == 200
    token = response.json()["access_token"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["first_name"] == "New"


def test_register_rejects_weak_password(client):
    response = register(client, password="weak")

    assert response.status_code == 400
    assert "Password must contain at least one number" in response.json()["detail"]


def test_register_rejects_duplicate_email(client):
    assert register(client).status_code == 201
    assert register(client, email="new.user@example.com").status_code == 409


def test_login_with_wrong_password(client):
    register(client)

    response = client.post("/api/auth/login", json={"email": "new.user@example.com", "password": "Wr0ngPassword"})

    assert response.status_code == 401


def test_protected_route_requires_token(client):
    assert client.get("/api/auth/me").status_code == 401
    assert client.get("/api/auth/me", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_refresh_issues_new_tokens(client):
    refresh_token = register(client).json()["refresh_token"]

    response = client.post("/api/auth/refresh", json={"refresh_token": refresh_token})

    assert response.status_code == 200
    assert response.json()["access_token"]


def test_refresh_rejects_access_token(client):
    access_token = register(client).json()["access_token"]
    client.cookies.clear()

    response = client.post("/api/auth/refresh", json={"refresh_token": access_token})

    assert response.status_code == 401


def test_idle_session_is_rejected(client, fake_redis, user, auth_headers):
    fake_redis.set(f"session:{user.id}", "expired")

    response = client.get("/api/auth/me", headers=auth_headers)

    assert response.status_code == 401
    assert response.json()["detail"] == "Session has timed out due to inactivity"


def test_logout_clears_session(client, fake_redis, user, auth_headers):
    assert client.get("/api/auth/me", headers=auth_headers).status_code == 200
    assert fake_redis.get(f"session:{user.id}") is not None

    response = client.post("/api/auth/logout", headers=auth_headers)

    assert response.status_code == 200
    assert fake_redis.get(f"session:{user.id}") is None


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_docs_authorize_with_bearer_token(client):
    schemes = client.get("/openapi.json").json()["components"]["securitySchemes"]

    assert schemes == {"HTTPBearer": {"type": "http", "scheme": "bearer"}}
