from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from usermanager import create_api_app
from usermanager.api import create_app
from usermanager.config import DEFAULT_PORT, Settings, load_settings
from usermanager.database import MEMORY_DATABASE, Database


@pytest.fixture()
def client() -> TestClient:
    database = Database(MEMORY_DATABASE)
    database.initialize()
    app = create_app(database=database, settings=Settings(environment="test"))
    return TestClient(app)


def test_cors_preflight_allows_any_origin(client: TestClient) -> None:
    response = client.options(
        "/api/users",
        headers={
            "Origin": "http://frontend.example.com",
            "Access-Control-Request-Method": "POST",
        },
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"


def test_cors_headers_on_simple_requests(client: TestClient) -> None:
    response = client.get("/api/users", headers={"Origin": "http://frontend.example.com"})

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"


def test_configured_origins_are_honoured() -> None:
    database = Database(MEMORY_DATABASE)
    database.initialize()
    settings = Settings(environment="test", cors_origins=("http://allowed.example.com",))
    client = TestClient(create_app(database=database, settings=settings))

    allowed = client.get("/api/users", headers={"Origin": "http://allowed.example.com"})
    denied = client.get("/api/users", headers={"Origin": "http://other.example.com"})

    assert allowed.headers["access-control-allow-origin"] == "http://allowed.example.com"
    assert "access-control-allow-origin" not in denied.headers


def test_json_bodies_are_parsed(client: TestClient) -> None:
    response = client.post(
        "/api/users",
        json={"name": "Test User", "email": "test@example.com", "password": "password123"},
    )

    assert response.status_code == 201
    body = response.json()
    assert "id" in body
    assert body["name"] == "Test User"
    assert "password" not in body


def test_unknown_route_returns_404(client: TestClient) -> None:
    assert client.get("/non-existent-route").status_code == 404


@pytest.mark.parametrize(
    ("method", "path"),
    [
        ("PATCH", "/api/users/some-id"),
        ("DELETE", "/api/users"),
        ("PUT", "/api/users"),
        ("POST", "/api/users/some-id"),
    ],
)
def test_unregistered_method_on_known_path_returns_404(client: TestClient, method: str, path: str) -> None:
    response = client.request(method, path)

    assert response.status_code == 404
    assert response.json() == {"detail": "Not Found"}
    assert "allow" not in response.headers


def test_trailing_slash_serves_collection_without_redirect(client: TestClient) -> None:
    created = client.post(
        "/api/users/",
        json={"name": "Slash", "email": "slash@example.com", "password": "secret"},
        follow_redirects=False,
    )
    assert created.status_code == 201

    listed = client.get("/api/users/", follow_redirects=False)
    assert listed.status_code == 200
    assert [user["id"] for user in listed.json()] == [created.json()["id"]]


def test_malformed_json_returns_400(client: TestClient) -> None:
    response = client.post(
        "/api/users",
        content='{"invalid json',
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid JSON payload"


def test_non_json_content_type_is_rejected_as_invalid_body(client: TestClient) -> None:
    response = client.post(
        "/api/users",
        content='{"name": "Plain", "email": "plain@example.com", "password": "secret"}',
        headers={"Content-Type": "text/plain"},
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid request body"
    assert client.get("/api/users").json() == []


def test_wrongly_typed_field_returns_400(client: TestClient) -> None:
    response = client.post(
        "/api/users",
        json={"name": 42, "email": "typed@example.com", "password": "secret"},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["message"] == "Invalid request body"
    assert "name" in body["error"]


def test_create_app_builds_database_from_settings() -> None:
    app = create_app(settings=Settings(environment="test"))

    database = app.state.database
    assert database.is_memory
    with TestClient(app) as client:
        assert client.get("/api/users").json() == []


def test_api_only_app_has_no_ui() -> None:
    app = create_api_app(settings=Settings(environment="test"))

    with TestClient(app) as client:
        assert client.get("/").status_code == 404
        assert client.get("/api/users").status_code == 200


def test_default_settings() -> None:
    settings = load_settings({})

    assert settings.port == DEFAULT_PORT == 5001
    assert settings.host == "0.0.0.0"
    assert settings.environment == "development"
    assert settings.echo_sql is True
    assert settings.cors_origins == ("*",)
    assert isinstance(settings.database_path, Path)
    assert settings.database_path.name == "users.sqlite3"


def test_test_environment_uses_memory_database() -> None:
    settings = load_settings({"APP_ENV": "test", "USERS_DB_PATH": "/tmp/ignored.sqlite3"})

    assert settings.is_test
    assert settings.database_path == MEMORY_DATABASE
    assert settings.echo_sql is False


def test_production_environment_is_file_backed(tmp_path: Path) -> None:
    db_path = tmp_path / "prod.sqlite3"
    settings = load_settings({"APP_ENV": "production", "USERS_DB_PATH": str(db_path)})

    assert settings.database_path == db_path.resolve()
    assert settings.echo_sql is False


def test_custom_port_and_origins() -> None:
    settings = load_settings(
        {"PORT": "3000", "USERS_CORS_ORIGINS": "http://a.example.com, http://b.example.com"}
    )

    assert settings.port == 3000
    assert settings.cors_origins == ("http://a.example.com", "http://b.example.com")


def test_sql_echo_can_be_toggled() -> None:
    assert load_settings({"USERS_SQL_ECHO": "off"}).echo_sql is False
    assert load_settings({"APP_ENV": "production", "USERS_SQL_ECHO": "1"}).echo_sql is True


@pytest.mark.parametrize("value", ["abc", "0", "70000"])
def test_invalid_port_is_rejected(value: str) -> None:
    with pytest.raises(ValueError):
        load_settings({"PORT": value})
