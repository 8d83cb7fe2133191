"""Tests for using middleware and some specific middleware."""
from typing import Any, cast

import pytest
from flask.testing import FlaskClient


@pytest.mark.parametrize(
    "app_config",
    [
        {
            "MIDDLEWARE": [
                {
                    "class": "werkzeug.middleware.proxy_fix:ProxyFix",
                    "kwargs": {"x_for": 1},
                }
            ],
            "AUTHORIZED_USERS": ["alice"],
        }
    ],
    indirect=True,
)
def test_proxy_fix_middleware(test_client: FlaskClient) -> None:
    """Test the ProxyFix middleware is in place and requests still go
    through it.
    """
    response = test_client.post(
        "/api/validate-credentials",
        json={"username": "alice", "password": "x", "repository": "o/r"},
        headers={"X-Forwarded-For": "10.1.2.3"},
    )

    assert response.status_code == 200
    json = cast(dict[str, Any], response.json)
    assert json["success"] is True


@pytest.mark.parametrize(
    "app_config",
    [
        {
            "MIDDLEWARE": [
                {
                    "class": "werkzeug.middleware.proxy_fix:ProxyFix",
                    "kwargs": {"x_prefix": 1},
                }
            ]
        }
    ],
    indirect=True,
)
def test_proxy_fix_middleware_prefix(test_client: FlaskClient) -> None:
    response = test_client.get(
        "/api/ping", headers={"X-Forwarded-Prefix": "/credentials"}
    )

    assert response.status_code == 200
    assert test_client.application.wsgi_app.__class__.__name__ == "ProxyFix"
