"""Test signup, login, token and health endpoints."""

import pytest

from dockyards.main import parse_args, settings_from_args
from dockyards.utils.tokens import issue_token


class TestSignup:
    """Test POST /v1/signup."""

    async def test_signup(self, client):
        response = await client.post(
            "/v1/signup",
            json={"name": "New User", "email": "New@Example.com", "password": "password"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["email"] == "new@example.com"
        assert body["name"] == "New User"
        assert "password" not in body

    async def test_duplicate_email(self, client, user):
        response = await client.post(
            "/v1/signup",
            json={"name": "Again", "email": "user@example.com", "password": "password"},
        )

        assert response.status_code == 409

    @pytest.mark.parametrize("payload", [
        {"name": "Test", "email": "not-an-email", "password": "password"},
        {"name": "", "email": "test@example.com", "password": "password"},
        {"name": "Test", "email": "test@example.com", "password": ""},
        {"name": "Test", "email": "test@example.com", "password": "x" * 73},
    ])
    async def test_rejected_payloads(self, client, payload):
        response = await client.post("/v1/signup", json=payload)

        assert response.status_code == 400


class TestLogin:
    """Test POST /v1/login and the token endpoints."""

    async def test_login(self, client, user):
        response = await client.post("/v1/login", json={"email": "user@example.com", "password": "password"})

        assert response.status_code == 200
        tokens = response.json()
        assert tokens["accessToken"] and tokens["refreshToken"]
        assert "set-cookie" not in response.headers

        whoami = await client.get("/v1/whoami", headers={"Authorization": f"Bearer {tokens['accessToken']}"})
        assert whoami.status_code == 200
        assert whoami.json()["email"] == "user@example.com"

    async def test_wrong_password(self, client, user):
        response = await client.post("/v1/login", json={"email": "user@example.com", "password": "wrong"})

        assert response.status_code == 400
        assert response.json()["error"] == "invalid email or password"

    async def test_unknown_email(self, client):
        response = await client.post("/v1/login", json={"email": "nobody@example.com", "password": "password"})

        assert response.status_code == 400

    async def test_server_cookies(self, client, user, container, settings):
        container.settings.FLAG_SET_SERVER_COOKIE = True

        response = await client.post("/v1/login", json={"email": "user@example.com", "password": "password"})

        assert response.status_code == 200
        cookies = response.headers.get_list("set-cookie")
        assert any(cookie.startswith(f"{settings.ACCESS_TOKEN_NAME}=") for cookie in cookies)
        assert any(cookie.startswith(f"{settings.REFRESH_TOKEN_NAME}=") for cookie in cookies)
        assert all("HttpOnly" in cookie for cookie in cookies)

        client.cookies.clear()
        whoami = await client.get(
            "/v1/whoami",
            headers={"Cookie": f"{settings.ACCESS_TOKEN_NAME}={response.json()['accessToken']}"},
        )
        assert whoami.status_code == 200

    async def test_refresh(self, client, user):
        login = await client.post("/v1/login", json={"email": "user@example.com", "password": "password"})

        response = await client.post("/v1/refresh", json={"refreshToken": login.json()["refreshToken"]})

        assert response.status_code == 200
        assert response.json()["accessToken"]

    async def test_refresh_rejects_access_token(self, client, user):
        login = await client.post("/v1/login", json={"email": "user@example.com", "password": "password"})

        response = await client.post("/v1/refresh", json={"refreshToken": login.json()["accessToken"]})

        assert response.status_code == 401

    async def test_logout(self, client, auth_headers):
        response = await client.post("/v1/logout", headers=auth_headers)

        assert response.status_code == 200


class TestPrincipal:
    """Test rejected access tokens."""

    async def test_missing_token(self, client):
        response = await client.get("/v1/whoami")

        assert response.status_code == 401

    async def test_garbage_token(self, client):
        response = await client.get("/v1/whoami", headers={"Authorization": "Bearer not-a-token"})

        assert response.status_code == 401

    async def test_unknown_user(self, client, settings):
        token = issue_token(
            "6c0f9a4e-2b7d-4d4f-9a57-6f1d1c3f8e21",
            "ghost",
            settings.JWT_ACCESS_TOKEN_SECRET,
            settings.JWT_ACCESS_TOKEN_EXPIRY,
            settings.JWT_ALGORITHM,
        )

        response = await client.get("/v1/whoami", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    async def test_expired_token(self, client, user, settings):
        token = issue_token(
            str(user.id),
            user.name,
            settings.JWT_ACCESS_TOKEN_SECRET,
            -60,
            settings.JWT_ALGORITHM,
        )

        response = await client.get("/v1/whoami", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401


class TestHealth:
    """Test the probes and command line settings."""

    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_ready_reports_garbage(self, client):
        response = await client.get("/health/ready")

        assert response.status_code == 200
        body = response.json()
        assert body["checks"]["database"] is True
        assert body["garbage"] == {"cluster": 0, "cloud": 0}

    def test_command_line_overrides(self, monkeypatch):
        monkeypatch.delenv("DB_CONF", raising=False)

        settings = settings_from_args(parse_args(["--use-inmem-db", "--log-level", "debug", "--del-garbage-interval", "5"]))

        assert settings.DATABASE_URL == "sqlite+aiosqlite://"
        assert settings.LOG_LEVEL == "debug"
        assert settings.DEL_GARBAGE_INTERVAL == 5
        assert settings.TRUST_INSECURE is False
