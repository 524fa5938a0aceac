import pytest

from gateway_helpers import FRONTEND_ORIGIN, build_test_client


def test_cors_allows_frontend_origin() -> None:
    client, *_ = build_test_client()

    response = client.get("/api/schwab/auth-url", headers={"Origin": FRONTEND_ORIGIN})

    assert response.headers["access-control-allow-origin"] == FRONTEND_ORIGIN
    assert response.headers["vary"] == "Origin"


def test_cors_blocks_unknown_origin() -> None:
    client, *_ = build_test_client()

    response = client.get(
        "/api/schwab/auth-url",
        headers={"Origin": "https://unknown.example"},
    )

    assert "access-control-allow-origin" not in response.headers


def test_cors_never_uses_wildcard() -> None:
    client, *_ = build_test_client()

    response = client.get("/api/schwab/auth-url", headers={"Origin": "null"})

    assert response.headers.get("access-control-allow-origin") != "*"


@pytest.mark.parametrize("path", ["auth-url", "auth", "exchange", "callback", "refresh"])
def test_cors_preflight_options(path: str) -> None:
    client, *_ = build_test_client()

    response = client.options(
        f"/api/schwab/{path}",
        headers={
            "Origin": FRONTEND_ORIGIN,
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "Content-Type",
        },
    )

    assert response.status_code == 204
    assert response.headers["access-control-allow-origin"] == FRONTEND_ORIGIN
    assert response.headers["access-control-allow-methods"] == "GET, POST, OPTIONS"
